"""Persistent streaming channel for one chat session."""

import asyncio
import logging
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from connect_chat.api.participant_client import ParticipantClient
from connect_chat.core.backoff import BackoffPolicy
from connect_chat.core.errors import ChannelClosed, ChatError, NetworkError, PayloadError
from connect_chat.core.transport import (
    TRANSIENT_ERRORS,
    Connector,
    StreamConnection,
    heartbeat_frame,
    parse_frame,
    subscribe_frame,
    websocket_connect,
)
from connect_chat.session.models import CONTENT_TYPE_TEXT, SendReceipt, TranscriptItem

logger = logging.getLogger(__name__)

# Marks the end of the item stream in the delivery queue
_END = object()


class ChannelState(Enum):
    """Connection state of an event channel."""

    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"  # Terminal


class EventChannel:
    """Owns the streaming connection of a session.

    Incoming items are queued in arrival order by a single reader task, so
    items received before and after a reconnect keep their relative order.
    Sends go over the participant HTTPS API with the current connection
    token.

    States: CONNECTING -> OPEN -> RECONNECTING -> OPEN ... -> CLOSED.
    """

    def __init__(
        self,
        client: ParticipantClient,
        url_provider: Callable[[], Awaitable[str]],
        token_provider: Callable[[], Awaitable[str]],
        connector: Connector = websocket_connect,
        backoff: Optional[BackoffPolicy] = None,
        heartbeat_interval: Optional[float] = 10.0,
        on_state_change: Optional[Callable[["ChannelState"], None]] = None,
        on_reconnect: Optional[Callable[[Optional[TranscriptItem]], None]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the channel.

        Args:
            client: Participant API client used for sends
            url_provider: Coroutine returning the websocket URL, called on every (re)connect
            token_provider: Coroutine returning a valid connection token
            connector: Opens a stream connection for a URL
            backoff: Reconnect policy
            heartbeat_interval: Seconds between heartbeats (None disables them)
            on_state_change: Callback invoked on every state transition
            on_reconnect: Callback invoked after a dropped stream is reopened, with
                the last item received before the drop
            sleep: Sleep function used for backoff delays
        """
        self.client = client
        self._url_provider = url_provider
        self._token_provider = token_provider
        self._connector = connector
        self.backoff = backoff or BackoffPolicy()
        self.heartbeat_interval = heartbeat_interval
        self._on_state_change = on_state_change
        self._on_reconnect = on_reconnect
        self._sleep = sleep

        self._state = ChannelState.CONNECTING
        self._connection: Optional[StreamConnection] = None
        self._queue: asyncio.Queue = asyncio.Queue()
        self._tasks: List[asyncio.Task] = []
        self._opened = False
        self._iterating = False
        self._exhausted = False
        self.error: Optional[ChatError] = None
        self.reconnect_count = 0
        self.last_item: Optional[TranscriptItem] = None

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._state == ChannelState.CLOSED

    def _set_state(self, state: ChannelState) -> None:
        if state == self._state:
            return
        logger.info(f"Channel {self._state.value} -> {state.value}")
        self._state = state
        if self._on_state_change:
            self._on_state_change(state)

    async def open(self) -> None:
        """Connect the stream and start delivering items.

        Raises:
            ChannelClosed: If the channel was already closed
            NetworkError: If no connection could be established within the retry budget
            AuthExpired: If a token could not be renewed
        """
        if self.is_closed:
            raise ChannelClosed("Channel is closed")
        if self._opened:
            return
        self._opened = True

        try:
            await self._connect_once()
        except TRANSIENT_ERRORS as e:
            logger.warning(f"Initial stream connection failed: {e}")
            try:
                await self._reconnect()
            except ChatError as err:
                await self._fail(err)
                raise
        except ChatError as e:
            await self._fail(e)
            raise

        self._set_state(ChannelState.OPEN)
        self._tasks.append(asyncio.create_task(self._read_loop()))
        if self.heartbeat_interval:
            self._tasks.append(asyncio.create_task(self._heartbeat_loop()))

    async def _connect_once(self) -> None:
        url = await self._url_provider()
        connection = await self._connector(url)
        try:
            await connection.send(subscribe_frame())
        except TRANSIENT_ERRORS:
            await self._close_connection(connection)
            raise
        self._connection = connection

    async def _reconnect(self) -> None:
        """Reopen the stream with exponential backoff.

        Raises:
            NetworkError: When the retry budget is exhausted
        """
        last_error: Optional[BaseException] = None
        for attempt, delay in enumerate(self.backoff.delays()):
            if self.is_closed:
                raise ChannelClosed("Channel closed during reconnect")
            self._set_state(ChannelState.RECONNECTING)
            logger.debug(f"Reconnect attempt {attempt + 1} in {delay:.2f}s")
            await self._sleep(delay)
            if self.is_closed:
                raise ChannelClosed("Channel closed during reconnect")
            try:
                await self._connect_once()
            except TRANSIENT_ERRORS as e:
                last_error = e
                logger.warning(f"Reconnect attempt {attempt + 1} failed: {e}")
                continue
            self.reconnect_count += 1
            self._set_state(ChannelState.OPEN)
            return
        raise NetworkError(
            f"Stream unavailable after {self.backoff.max_retries} reconnect attempts"
        ) from last_error

    async def _read_loop(self) -> None:
        try:
            while not self.is_closed:
                try:
                    raw = await self._connection.recv()
                except TRANSIENT_ERRORS as e:
                    if self.is_closed:
                        return
                    logger.warning(f"Stream dropped: {e}")
                    await self._close_connection(self._connection)
                    await self._reconnect()
                    if self._on_reconnect:
                        self._on_reconnect(self.last_item)
                    continue

                item = parse_frame(raw)
                if item is not None:
                    self.last_item = item
                    self._queue.put_nowait(item)
        except ChannelClosed:
            return
        except ChatError as e:
            logger.error(f"Stream failed: {e}")
            await self._fail(e)
        except Exception as e:
            # The reader must never die without closing the channel
            logger.exception("Unexpected error reading the stream")
            await self._fail(PayloadError(f"Unreadable stream data: {e}"))

    async def _heartbeat_loop(self) -> None:
        while not self.is_closed:
            await asyncio.sleep(self.heartbeat_interval)
            if self._state != ChannelState.OPEN or self._connection is None:
                continue
            try:
                await self._connection.send(heartbeat_frame())
            except TRANSIENT_ERRORS as e:
                # The read loop notices the drop and reconnects
                logger.debug(f"Heartbeat failed: {e}")

    async def _close_connection(self, connection: Optional[StreamConnection]) -> None:
        if connection is None:
            return
        try:
            await connection.close()
        except TRANSIENT_ERRORS as e:
            logger.debug(f"Error closing stream connection: {e}")
        if connection is self._connection:
            self._connection = None

    async def _fail(self, error: ChatError) -> None:
        """Close the channel, delivering the error after any queued items."""
        if self.is_closed:
            return
        self.error = error
        self._queue.put_nowait(error)
        await self._shutdown()

    async def close(self) -> None:
        """Close the channel. Terminal and idempotent."""
        if self.is_closed:
            return
        await self._shutdown()

    async def _shutdown(self) -> None:
        self._set_state(ChannelState.CLOSED)
        current = asyncio.current_task()
        tasks = [t for t in self._tasks if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()
        await self._close_connection(self._connection)
        self._queue.put_nowait(_END)

    async def items(self) -> AsyncIterator[TranscriptItem]:
        """Iterate over incoming items until the channel closes.

        Items already received when the channel closes are still delivered.
        The iterator cannot be restarted once it has reached the end.

        Raises:
            ChannelClosed: If iteration starts after the stream has ended
            RuntimeError: If another consumer is already iterating
            ChatError: The error that closed the channel, after queued items
        """
        if self._exhausted:
            raise ChannelClosed("Channel is closed")
        if self._iterating:
            raise RuntimeError("Channel items are already being consumed")
        self._iterating = True
        try:
            while True:
                entry = await self._queue.get()
                if entry is _END:
                    self._exhausted = True
                    return
                if isinstance(entry, ChatError):
                    self._exhausted = True
                    raise entry
                yield entry
        finally:
            self._iterating = False

    async def _token(self) -> str:
        if self.is_closed:
            raise ChannelClosed("Channel is closed")
        return await self._token_provider()

    async def send_message(
        self, content: str, content_type: str = CONTENT_TYPE_TEXT
    ) -> SendReceipt:
        """Send a message; returns the server id and timestamp.

        Raises:
            ChannelClosed: If the channel is closed
        """
        token = await self._token()
        return await self.client.send_message(token, content, content_type)

    async def send_event(
        self, content_type: str, content: Optional[str] = None
    ) -> SendReceipt:
        """Send an event; returns the server id and timestamp.

        Raises:
            ChannelClosed: If the channel is closed
        """
        token = await self._token()
        return await self.client.send_event(token, content_type, content)
