"""Exception types raised by the chat client."""

from typing import Optional


class ChatError(Exception):
    """Base class for all chat client errors."""

    pass


class AuthExpired(ChatError):
    """The participant or connection token is no longer accepted."""

    pass


class NetworkError(ChatError):
    """Transport failure talking to the participant service or the stream."""

    pass


class PaginationExhausted(ChatError):
    """No further transcript history exists."""

    pass


class ChannelClosed(ChatError):
    """Operation attempted on a channel that has been closed."""

    pass


class PayloadError(ChatError):
    """The server returned a payload that could not be parsed."""

    pass


class ParticipantApiError(ChatError):
    """The participant service rejected a request."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error_type: Optional[str] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_type = error_type
