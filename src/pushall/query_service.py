"""
Paginated, filtered reads over the message store, and the controller that
feeds them into the live window.

Pagination is keyset based: the first page has no bound, each following page
uses the id of the last record shown as an exclusive `before_id`.
"""

import asyncio

from .live_window import LiveWindow, Page
from .logging_setup import get_logger
from .models import Message, PushPayload
from .sqlite_storage import SQLiteStorage

logger = get_logger(__name__)

PAGE_SIZE = 20
DEBOUNCE_SECONDS = 0.5


class QueryService:
    """Read API over SQLiteStorage used by the HTTP layer and the window."""

    def __init__(self, storage: SQLiteStorage, page_size: int = PAGE_SIZE):
        self.storage = storage
        self.page_size = page_size

    async def fetch_page(
        self,
        limit: int | None = None,
        before_id: int | None = None,
        keyword: str | None = None,
    ) -> Page:
        """Fetch one page, newest first.

        has_more is `len(records) == limit`: a page that ends exactly at the
        oldest row still reports True, and the next fetch comes back empty.
        """
        if limit is None:
            limit = self.page_size
        records = await self.storage.query(limit, before_id, keyword)
        return Page(
            records=records,
            next_cursor=records[-1].id if records else None,
            has_more=limit > 0 and len(records) == limit,
        )

    async def fetch_count(self, keyword: str | None = None) -> int:
        """Total matching `keyword`; 0 when the count fails."""
        try:
            return await self.storage.count(keyword)
        except Exception as e:
            logger.error("Message count failed: %s", e)
            return 0

    async def append(self, message: PushPayload) -> Message:
        return await self.storage.append(message)

    async def clear(self) -> None:
        await self.storage.clear()


class WindowController:
    """
    Consumer side of the live window: scroll, filter and clear.

    A filter change starts a new window epoch after a debounce delay; pages
    still in flight for an older epoch are discarded when they land.
    """

    def __init__(
        self,
        service: QueryService,
        window: LiveWindow,
        debounce: float = DEBOUNCE_SECONDS,
    ):
        self.service = service
        self.window = window
        self.debounce = debounce
        self._fetch_lock = asyncio.Lock()
        self._debounce_task: asyncio.Task | None = None

    async def _load(self, epoch: int, before_id: int | None, reset: bool) -> bool:
        keyword = self.window.keyword
        page = await self.service.fetch_page(self.service.page_size, before_id, keyword)
        total = await self.service.fetch_count(keyword)
        applied = await self.window.apply_page(epoch, page, total, reset=reset)
        if applied:
            logger.debug(
                "Loaded %d records (before=%s, keyword=%r, total=%d)",
                len(page.records), before_id, keyword, total,
            )
        return applied

    async def refresh(self, keyword: str | None = None) -> bool:
        """Restart from the first page, optionally with a new keyword."""
        epoch = await self.window.begin_epoch(keyword)
        return await self._load(epoch, None, reset=True)

    async def load_more(self) -> bool:
        """Append the next page. Duplicate calls while one is loading are ignored."""
        if not self.window.ready or not self.window.has_more:
            return False
        if self._fetch_lock.locked():
            logger.debug("Page load already in progress, ignoring")
            return False

        async with self._fetch_lock:
            return await self._load(self.window.epoch, self.window.next_cursor, reset=False)

    def set_keyword(self, keyword: str) -> asyncio.Task:
        """Debounced filter change; a newer call supersedes a pending one."""
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = asyncio.create_task(self._apply_keyword(keyword))
        return self._debounce_task

    async def _apply_keyword(self, keyword: str) -> bool:
        await asyncio.sleep(self.debounce)
        try:
            return await self.refresh(keyword)
        except Exception as e:
            logger.error("Reload for keyword %r failed: %s", keyword, e)
            return False

    async def clear_all(self) -> None:
        """Delete every stored message and empty the window."""
        await self.window.reset(clear_store=self.service.clear)
        logger.info("All messages cleared")

    async def stop(self) -> None:
        if self._debounce_task and not self._debounce_task.done():
            self._debounce_task.cancel()
            try:
                await self._debounce_task
            except asyncio.CancelledError:
                pass
