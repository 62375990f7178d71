"""Terminal rendering for the chat client."""
