"""Lifecycle controller tying negotiation, the event channel and the transcript together."""

import asyncio
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from connect_chat.api.participant_client import ParticipantClient
from connect_chat.config.models import ChatSettings
from connect_chat.core.errors import AuthExpired, ChannelClosed, ChatError
from connect_chat.core.event_channel import ChannelState, EventChannel
from connect_chat.core.negotiator import SessionNegotiator
from connect_chat.core.reconciler import TranscriptReconciler
from connect_chat.core.transport import Connector, websocket_connect
from connect_chat.session.models import (
    CONTENT_TYPE_TEXT,
    EVENT_CHAT_ENDED,
    EVENT_MESSAGE_DELIVERED,
    EVENT_MESSAGE_READ,
    EVENT_TYPING,
    ChatSession,
    SendReceipt,
    SessionState,
    TranscriptItem,
    TranscriptPage,
)
from connect_chat.session.recorder import SessionRecorder

logger = logging.getLogger(__name__)

# Lower bound between token refreshes
MIN_REFRESH_DELAY = 5.0

# Pages fetched forward after a reconnect to recover missed items
GAP_FILL_MAX_PAGES = 10


class ChatSessionController:
    """Runs one chat session from negotiation to disconnect.

    Negotiation runs once at startup and hands its result to the event
    channel. After that the channel listener, the transcript merge and the
    connection token refresh run concurrently as asyncio tasks.
    """

    def __init__(
        self,
        client: ParticipantClient,
        session: ChatSession,
        settings: Optional[ChatSettings] = None,
        connector: Connector = websocket_connect,
        recorder: Optional[SessionRecorder] = None,
        on_state_change: Optional[Callable[[ChannelState], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the controller.

        Args:
            client: Participant API client
            session: Session holding the participant token
            settings: Resolved settings (defaults used when omitted)
            connector: Opens stream connections
            recorder: Optional recorder receiving every merged item
            on_state_change: Callback for channel state transitions
            clock: Returns the current UTC time
            sleep: Sleep function for backoff and refresh scheduling
        """
        self.client = client
        self.session = session
        self.settings = settings or ChatSettings()
        self.recorder = recorder
        self._connector = connector
        self._on_state_change = on_state_change
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep

        self.negotiator = SessionNegotiator(client, clock=self._clock)
        self.reconciler = TranscriptReconciler(fetch_page=self._fetch_page)
        self.channel: Optional[EventChannel] = None
        self.chat_ended = asyncio.Event()
        self.error: Optional[ChatError] = None

        self._negotiate_lock = asyncio.Lock()
        self._tasks: List[asyncio.Task] = []
        self._merge_task: Optional[asyncio.Task] = None
        self._record_queue: Optional[asyncio.Queue] = None
        self._started = False
        self._closed = False

    @property
    def refresh_margin(self) -> timedelta:
        return timedelta(seconds=self.settings.refresh_margin)

    async def __aenter__(self) -> "ChatSessionController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    async def start(self) -> None:
        """Negotiate the connection and open the event channel.

        Raises:
            AuthExpired: If the participant token is stale
            NetworkError: If the service or stream cannot be reached
        """
        if self._started:
            raise RuntimeError("Session already started")
        self._started = True

        try:
            await self._renegotiate(force=True)
        except ChatError:
            await self._teardown()
            raise

        self.channel = EventChannel(
            self.client,
            url_provider=self._websocket_url,
            token_provider=self._connection_token,
            connector=self._connector,
            backoff=self.settings.backoff_policy(),
            heartbeat_interval=self.settings.heartbeat_interval,
            on_state_change=self._on_state_change,
            on_reconnect=self._on_reconnect,
            sleep=self._sleep,
        )
        if self.recorder is not None:
            self._record_queue = self.reconciler.subscribe()
            self._tasks.append(asyncio.create_task(self._record_loop()))

        try:
            await self.channel.open()
        except ChatError:
            await self._teardown()
            raise

        self._merge_task = asyncio.create_task(self._merge())
        self._tasks.append(asyncio.create_task(self._refresh_loop()))
        logger.info(f"Chat session started for contact {self.session.contact_id}")

    async def _renegotiate(self, force: bool = False) -> None:
        async with self._negotiate_lock:
            if not force and not self.session.needs_refresh(self._clock(), self.refresh_margin):
                return
            details = await self.negotiator.negotiate(self.session.participant_token)
            self.session.apply(details)

    async def _connection_token(self) -> str:
        if self.session.state == SessionState.DISCONNECTED:
            raise ChannelClosed("Session is disconnected")
        if self.session.needs_refresh(self._clock(), self.refresh_margin):
            await self._renegotiate()
        return self.session.connection_token

    async def _websocket_url(self) -> str:
        expiry = self.session.websocket_expiry
        if expiry is not None and expiry <= self._clock():
            # Stream URLs are single use per expiry window; ask for a new one
            await self._renegotiate(force=True)
        return self.session.websocket_url

    async def _refresh_loop(self) -> None:
        while not self._closed:
            expiry = self.session.connection_expiry
            delay = (expiry - self.refresh_margin - self._clock()).total_seconds()
            await self._sleep(max(delay, MIN_REFRESH_DELAY))
            if self._closed:
                return
            try:
                await self._renegotiate()
            except AuthExpired as e:
                logger.error(f"Connection token could not be renewed: {e}")
                self.error = e
                await self.channel.close()
                return
            except ChatError as e:
                logger.warning(f"Token refresh failed, will retry: {e}")

    async def _watch(self, source: AsyncIterator[TranscriptItem]) -> AsyncIterator[TranscriptItem]:
        async for item in source:
            if item.content_type == EVENT_CHAT_ENDED:
                logger.info("Chat ended by the service")
                self.chat_ended.set()
            yield item

    async def _merge(self) -> None:
        try:
            await self.reconciler.run(self._watch(self.channel.items()))
        except ChatError as e:
            logger.error(f"Live transcript stopped: {e}")
            if self.error is None:
                self.error = e

    async def _record_loop(self) -> None:
        while True:
            item = await self._record_queue.get()
            await self.recorder.record_item(item)

    async def _get_page(
        self, scan_direction: str, next_token: Optional[str], start_position: Optional[dict]
    ) -> TranscriptPage:
        token = await self._connection_token()
        return await self.client.get_transcript(
            token,
            contact_id=self.session.contact_id,
            max_results=self.settings.page_size,
            next_token=next_token,
            scan_direction=scan_direction,
            sort_order="ASCENDING",
            start_position=start_position,
        )

    async def _fetch_page(
        self, next_token: Optional[str], start_position: Optional[dict]
    ) -> TranscriptPage:
        return await self._get_page("BACKWARD", next_token, start_position)

    async def _fetch_forward_page(
        self, next_token: Optional[str], start_position: Optional[dict]
    ) -> TranscriptPage:
        return await self._get_page("FORWARD", next_token, start_position)

    def _on_reconnect(self, last_item: Optional[TranscriptItem]) -> None:
        since = last_item.absolute_time if last_item is not None else None
        self._tasks.append(asyncio.create_task(self._fill_gap(since)))

    async def _fill_gap(self, since: Optional[datetime]) -> None:
        """Merge items sent while the stream was down."""
        try:
            added = await self.reconciler.fetch_newer(
                self._fetch_forward_page, since=since, max_pages=GAP_FILL_MAX_PAGES
            )
        except ChatError as e:
            logger.warning(f"Could not recover items missed during reconnect: {e}")
            return
        if added:
            logger.info(f"Recovered {added} items missed during reconnect")

    def _require_open(self) -> EventChannel:
        if self.channel is None or self.channel.is_closed:
            raise ChannelClosed("Session is not connected")
        return self.channel

    async def send_message(
        self, content: str, content_type: str = CONTENT_TYPE_TEXT
    ) -> SendReceipt:
        """Send a chat message."""
        return await self._require_open().send_message(content, content_type)

    async def send_event(
        self, content_type: str, content: Optional[str] = None
    ) -> SendReceipt:
        """Send an arbitrary event."""
        return await self._require_open().send_event(content_type, content)

    async def send_typing(self) -> SendReceipt:
        return await self.send_event(EVENT_TYPING)

    async def send_read_receipt(self, message_id: str) -> SendReceipt:
        return await self.send_event(EVENT_MESSAGE_READ, json.dumps({"messageId": message_id}))

    async def send_delivered_receipt(self, message_id: str) -> SendReceipt:
        return await self.send_event(
            EVENT_MESSAGE_DELIVERED, json.dumps({"messageId": message_id})
        )

    async def load_history(self, max_pages: Optional[int] = None) -> List[TranscriptItem]:
        """Merge older transcript pages into the view and return it."""
        return await self.reconciler.fetch_all(max_pages=max_pages)

    def transcript(self) -> List[TranscriptItem]:
        return self.reconciler.items()

    async def wait_closed(self) -> None:
        """Wait until the live stream ends.

        Raises:
            ChatError: The error that ended the session, if any
        """
        if self._merge_task is not None:
            await self._merge_task
        if self.error is not None:
            raise self.error

    async def wait_stopped(self) -> None:
        """Wait until the live stream ends, without raising its error."""
        if self._merge_task is not None:
            # Shielded so a cancelled waiter leaves the merge running
            await asyncio.shield(self._merge_task)

    async def disconnect(self) -> None:
        """Leave the chat and release every resource. Idempotent."""
        if self._closed:
            return
        self._closed = True
        call_service = (
            self.session.state == SessionState.CONNECTED
            and not self.chat_ended.is_set()
            and self.error is None
        )
        try:
            if call_service:
                await self.client.disconnect_participant(self.session.connection_token)
        finally:
            await self._teardown()

    async def _teardown(self) -> None:
        self._closed = True
        if self.channel is not None:
            await self.channel.close()
        if self._merge_task is not None:
            # The channel delivers queued items before ending the stream
            await self._merge_task
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

        if self.recorder is not None:
            while self._record_queue is not None and not self._record_queue.empty():
                await self.recorder.record_item(self._record_queue.get_nowait())
            await self.recorder.close()

        self.session.mark_disconnected()
        logger.info(f"Chat session closed for contact {self.session.contact_id}")
