"""Amazon Connect participant chat client."""

__version__ = "0.1.0"
