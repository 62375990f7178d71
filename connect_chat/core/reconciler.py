"""Ordered, deduplicated merge of transcript history and live items."""

import asyncio
import bisect
import logging
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from connect_chat.core.errors import PaginationExhausted
from connect_chat.session.models import TranscriptItem, TranscriptPage, format_timestamp

logger = logging.getLogger(__name__)

# Fetches one page: (next_token, start_position) -> page
PageFetcher = Callable[[Optional[str], Optional[dict]], Awaitable[TranscriptPage]]


class TranscriptReconciler:
    """Merges paginated history with live items into one ordered view.

    Items are keyed by id. When an item arrives twice (once from history and
    once from the live stream) the first-seen copy is kept, so merging is
    idempotent. The view is always sorted by (absolute time, id), whatever
    order items arrive in.
    """

    def __init__(self, fetch_page: Optional[PageFetcher] = None):
        """Initialize the reconciler.

        Args:
            fetch_page: Coroutine fetching a history page scanning backwards
        """
        self._fetch_page = fetch_page
        self._by_id: Dict[str, TranscriptItem] = {}
        self._ordered: List[TranscriptItem] = []
        self._keys: List[tuple] = []
        self._next_token: Optional[str] = None
        self._history_started = False
        self._history_exhausted = False
        self._subscribers: List[asyncio.Queue] = []
        self._page_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._ordered)

    def __contains__(self, item_id: str) -> bool:
        return item_id in self._by_id

    @property
    def history_exhausted(self) -> bool:
        return self._history_exhausted

    def items(self) -> List[TranscriptItem]:
        """Return the merged transcript in order."""
        return list(self._ordered)

    def get(self, item_id: str) -> Optional[TranscriptItem]:
        return self._by_id.get(item_id)

    def subscribe(self) -> asyncio.Queue:
        """Return a queue that receives every newly merged item."""
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def _insert(self, item: TranscriptItem) -> bool:
        if item.item_id in self._by_id:
            return False
        self._by_id[item.item_id] = item
        key = item.sort_key
        index = bisect.bisect_right(self._keys, key)
        self._keys.insert(index, key)
        self._ordered.insert(index, item)
        for queue in self._subscribers:
            queue.put_nowait(item)
        return True

    def add_live(self, item: TranscriptItem) -> bool:
        """Merge one live item.

        Returns:
            True if the item was new
        """
        added = self._insert(item)
        if not added:
            logger.debug(f"Dropping duplicate item {item.item_id}")
        return added

    def add_page(self, items: Iterable[TranscriptItem]) -> int:
        """Merge a page of history.

        Returns:
            Number of items that were new
        """
        return sum(1 for item in items if self._insert(item))

    def _start_position(self) -> Optional[dict]:
        # First page scans back from the oldest item we already hold
        if not self._ordered:
            return None
        oldest = self._ordered[0]
        return {"AbsoluteTime": format_timestamp(oldest.absolute_time)}

    async def fetch_older(self) -> int:
        """Fetch the next page of older history and merge it.

        Returns:
            Number of new items merged

        Raises:
            PaginationExhausted: When no further history exists
        """
        if self._fetch_page is None:
            raise PaginationExhausted("No history source configured")

        async with self._page_lock:
            if self._history_exhausted:
                raise PaginationExhausted("No further transcript history")

            if not self._history_started:
                page = await self._fetch_page(None, self._start_position())
                self._history_started = True
            else:
                page = await self._fetch_page(self._next_token, None)

            self._next_token = page.next_token
            if not page.next_token:
                self._history_exhausted = True

            added = self.add_page(page.items)
            logger.debug(f"Merged history page: {len(page.items)} items, {added} new")
            return added

    async def fetch_all(self, max_pages: Optional[int] = None) -> List[TranscriptItem]:
        """Page backwards until history is exhausted or max_pages were read."""
        pages = 0
        while max_pages is None or pages < max_pages:
            try:
                await self.fetch_older()
            except PaginationExhausted:
                break
            pages += 1
        return self.items()

    async def fetch_newer(
        self,
        fetch_page: PageFetcher,
        since: Optional[datetime] = None,
        max_pages: Optional[int] = None,
    ) -> int:
        """Page forwards from a point in time and merge everything found.

        Used to recover items the live stream missed while it was down.

        Args:
            fetch_page: Coroutine fetching a page scanning forwards
            since: Time to scan from (default: the newest merged item)
            max_pages: Stop after this many pages

        Returns:
            Number of new items merged
        """
        if since is None and self._ordered:
            since = self._ordered[-1].absolute_time
        start_position = {"AbsoluteTime": format_timestamp(since)} if since else None

        added = 0
        pages = 0
        next_token: Optional[str] = None
        while max_pages is None or pages < max_pages:
            if next_token:
                page = await fetch_page(next_token, None)
            else:
                page = await fetch_page(None, start_position)
            pages += 1
            added += self.add_page(page.items)
            next_token = page.next_token
            if not next_token:
                break
        logger.debug(f"Forward fetch merged {added} new items from {pages} pages")
        return added

    async def run(self, source: AsyncIterator[TranscriptItem]) -> None:
        """Merge live items from source until it ends or the task is cancelled.

        Items merged before cancellation stay in the view.
        """
        async for item in source:
            self.add_live(item)
