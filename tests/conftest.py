"""Shared fixtures for connect-chat tests."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


class FakeStream:
    """In-memory stand-in for a WebSocket connection."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent = []
        self.closed = False

    def push(self, frame):
        self.incoming.put_nowait(frame)

    def drop(self):
        self.incoming.put_nowait(ConnectionError("connection dropped"))

    async def send(self, message):
        if self.closed:
            raise ConnectionError("connection closed")
        self.sent.append(json.loads(message))

    async def recv(self):
        value = await self.incoming.get()
        if isinstance(value, BaseException):
            raise value
        return value

    async def close(self):
        self.closed = True


class FakeConnector:
    """Hands out prepared streams (or raises prepared errors) in order."""

    def __init__(self, streams):
        self.streams = list(streams)
        self.urls = []

    async def __call__(self, url):
        self.urls.append(url)
        if not self.streams:
            raise ConnectionError("no more streams")
        stream = self.streams.pop(0)
        if isinstance(stream, BaseException):
            raise stream
        return stream


@pytest.fixture
def base_time():
    return BASE_TIME


@pytest.fixture
def wire_item():
    """Factory for participant service Item payloads."""

    def make(
        item_id,
        seconds=0,
        item_type="MESSAGE",
        content="hello",
        content_type="text/plain",
        role="AGENT",
        display_name="Agent Smith",
        participant_id="agent-1",
    ):
        return {
            "Id": item_id,
            "Type": item_type,
            "ContentType": content_type,
            "Content": content,
            "AbsoluteTime": _iso(BASE_TIME + timedelta(seconds=seconds)),
            "ParticipantRole": role,
            "DisplayName": display_name,
            "ParticipantId": participant_id,
        }

    return make


@pytest.fixture
def chat_frame():
    """Wrap an item payload in an aws/chat stream frame."""

    def make(item):
        return json.dumps(
            {"topic": "aws/chat", "contentType": "application/json", "content": json.dumps(item)}
        )

    return make


@pytest.fixture
def make_item(wire_item):
    """Factory for parsed TranscriptItem objects."""
    from connect_chat.session.models import TranscriptItem

    def make(item_id, seconds=0, **kwargs):
        return TranscriptItem.from_api(wire_item(item_id, seconds, **kwargs))

    return make


@pytest.fixture
def stream_factory():
    return FakeStream


@pytest.fixture
def connector_factory():
    return FakeConnector


@pytest.fixture
def connection_response():
    """Factory for CreateParticipantConnection responses."""

    def make(token="conn-token-1", expires_in=3600, url="wss://stream.test/1", now=None):
        now = now or datetime.now(timezone.utc)
        return {
            "ConnectionCredentials": {
                "ConnectionToken": token,
                "Expiry": _iso(now + timedelta(seconds=expires_in)),
            },
            "Websocket": {
                "Url": url,
                "ConnectionExpiry": _iso(now + timedelta(seconds=expires_in)),
            },
        }

    return make


@pytest.fixture
def eventually():
    """Poll a predicate until it holds or a timeout expires."""

    async def wait(predicate, timeout=2.0):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    return wait


@pytest.fixture
def no_sleep():
    """Sleep replacement that records delays and only yields to the loop."""
    delays = []

    async def sleep(delay):
        delays.append(delay)
        await asyncio.sleep(0)

    sleep.delays = delays
    return sleep
