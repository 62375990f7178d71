"""Chat session lifecycle: negotiation, streaming channel and transcript merge."""
