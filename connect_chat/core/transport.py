"""WebSocket transport and frame codec for the participant chat stream.

The stream speaks a small JSON envelope protocol: every frame is an object
with a ``topic``. ``aws/subscribe`` and ``aws/heartbeat`` are control
topics; ``aws/chat`` frames carry a JSON-encoded transcript item in
``content``.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

import websockets
from websockets.exceptions import WebSocketException

from connect_chat.core.errors import NetworkError, PayloadError
from connect_chat.session.models import CONTROL_ITEM_TYPES, TranscriptItem

logger = logging.getLogger(__name__)

TOPIC_SUBSCRIBE = "aws/subscribe"
TOPIC_HEARTBEAT = "aws/heartbeat"
TOPIC_CHAT = "aws/chat"

# Failures after which the stream can be reopened
TRANSIENT_ERRORS = (NetworkError, OSError, asyncio.TimeoutError, WebSocketException)


class StreamConnection(Protocol):
    """The parts of a WebSocket connection the channel relies on."""

    async def send(self, message: str) -> None: ...

    async def recv(self) -> Union[str, bytes]: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[StreamConnection]]


async def websocket_connect(url: str, open_timeout: float = 10.0) -> StreamConnection:
    """Open a WebSocket to the streaming endpoint."""
    logger.debug("Opening stream connection")
    return await websockets.connect(url, open_timeout=open_timeout, ping_interval=None)


def subscribe_frame() -> str:
    return json.dumps({"topic": TOPIC_SUBSCRIBE, "content": {"topics": [TOPIC_CHAT]}})


def heartbeat_frame() -> str:
    return json.dumps({"topic": TOPIC_HEARTBEAT})


def _load_json(raw: Any, what: str) -> Any:
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        raise PayloadError(f"Malformed {what}") from e


def parse_frame(raw: Union[str, bytes]) -> Optional[TranscriptItem]:
    """Decode a stream frame.

    Returns:
        The transcript item carried by an ``aws/chat`` frame, or None for
        control frames

    Raises:
        PayloadError: If the frame or its item is malformed
        NetworkError: If the service refused the topic subscription
    """
    frame = _load_json(raw, "stream frame")
    if not isinstance(frame, dict):
        raise PayloadError("Stream frame must be an object")

    topic = frame.get("topic")
    if topic == TOPIC_SUBSCRIBE:
        content = frame.get("content") or {}
        if isinstance(content, dict) and content.get("status") == "failure":
            raise NetworkError("Stream subscription was refused")
        return None
    if topic != TOPIC_CHAT:
        logger.debug(f"Ignoring frame with topic {topic!r}")
        return None

    content = frame.get("content")
    payload = _load_json(content, "chat frame content") if isinstance(content, (str, bytes)) else content
    if isinstance(payload, dict) and payload.get("Type") in CONTROL_ITEM_TYPES:
        return None
    return TranscriptItem.from_api(payload)
