"""Chat session data models and transcript capture."""

from .models import (
    Attachment,
    ChatSession,
    ConnectionDetails,
    ItemKind,
    ParticipantRole,
    Receipt,
    SendReceipt,
    SessionMetadata,
    SessionState,
    TranscriptItem,
    TranscriptPage,
)
from .recorder import SessionRecorder, render_markdown

__all__ = [
    "Attachment",
    "ChatSession",
    "ConnectionDetails",
    "ItemKind",
    "ParticipantRole",
    "Receipt",
    "SendReceipt",
    "SessionMetadata",
    "SessionState",
    "TranscriptItem",
    "TranscriptPage",
    "SessionRecorder",
    "render_markdown",
]
