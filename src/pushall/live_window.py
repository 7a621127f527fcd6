"""
In-memory live window: the ordered list of messages the consumer is showing.

Two paths write to it: page loads driven by the consumer (scroll / filter)
and pushes from the ingestion pipeline. Every mutation happens under one
asyncio.Lock and is reported to listeners as a WindowEvent.

The total is an estimate. A push bumps it to max(total, len(records)) + 1
without recounting, and a page load replaces it with the count fetched
alongside that page.
"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable

from .logging_setup import get_logger
from .models import Message

logger = get_logger(__name__)


@dataclass(frozen=True)
class Page:
    """One keyset page, newest first."""
    records: list[Message]
    next_cursor: int | None
    has_more: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "records": [m.to_dict() for m in self.records],
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
        }


class WindowEventType(Enum):
    PUSH = "push"
    PAGE = "page"
    RESET = "reset"


@dataclass
class WindowEvent:
    type: WindowEventType
    epoch: int
    total: int
    has_more: bool
    keyword: str
    records: list[Message] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "epoch": self.epoch,
            "total": self.total,
            "has_more": self.has_more,
            "keyword": self.keyword,
            "records": [m.to_dict() for m in self.records],
        }


WindowListener = Callable[[WindowEvent], None]


class LiveWindow:
    """Consumer-visible result window kept in sync with pages and pushes."""

    def __init__(self):
        self.records: list[Message] = []
        self.has_more = True
        self.total = 0
        self.keyword = ""
        self.epoch = 0
        # True once the current epoch has its first page
        self.ready = False
        self._lock = asyncio.Lock()
        self._listeners: list[WindowListener] = []
        # Pushed during the current epoch; kept when the epoch's first page lands
        self._pushed: list[Message] = []

    @property
    def next_cursor(self) -> int | None:
        """before_id for the next page: id of the last displayed record."""
        return self.records[-1].id if self.records else None

    @property
    def real_total(self) -> int:
        return max(self.total, len(self.records))

    def add_listener(self, listener: WindowListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: WindowListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: WindowEventType, records: list[Message] | None = None) -> None:
        event = WindowEvent(
            type=event_type,
            epoch=self.epoch,
            total=self.real_total,
            has_more=self.has_more,
            keyword=self.keyword,
            records=list(records or []),
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error("Window listener failed: %s", e)

    async def push(self, message: Message) -> bool:
        """Prepend a newly stored message. Returns False if it is already shown.

        The active keyword is not applied here: every push is shown. A page
        fetched between the store append and this push may already hold the
        record, in which case nothing changes.
        """
        async with self._lock:
            if any(m.id == message.id for m in self.records):
                logger.debug("Message %d already in window", message.id)
                return False
            previous_len = len(self.records)
            self.records.insert(0, message)
            self._pushed.append(message)
            self.total = max(self.total, previous_len) + 1
            self._emit(WindowEventType.PUSH, [message])
            return True

    async def begin_epoch(self, keyword: str | None = None) -> int:
        """Start a new query generation; older in-flight pages will be dropped."""
        async with self._lock:
            self.epoch += 1
            if keyword is not None:
                self.keyword = keyword
            self.has_more = True
            self.ready = False
            self._pushed = []
            logger.debug("Window epoch %d (keyword=%r)", self.epoch, self.keyword)
            return self.epoch

    async def apply_page(
        self,
        epoch: int,
        page: Page,
        total: int | None = None,
        reset: bool = False,
    ) -> bool:
        """Merge a fetched page. Returns False when the page belongs to an old epoch.

        A reset page replaces the list but keeps messages pushed after the
        query ran (ids above the page's newest id).
        """
        async with self._lock:
            if epoch != self.epoch:
                logger.debug("Discarding page from epoch %d (current %d)", epoch, self.epoch)
                return False

            if reset:
                newest = page.records[0].id if page.records else 0
                kept = [m for m in self._pushed if m.id > newest]
                kept.sort(key=lambda m: m.id, reverse=True)
                self.records = kept + list(page.records)
            else:
                self.records.extend(page.records)

            self.ready = True
            self.has_more = page.has_more
            if total is not None:
                self.total = total
            self._emit(WindowEventType.PAGE, page.records)
            return True

    async def reset(self, clear_store: Callable[[], Awaitable[None]] | None = None) -> None:
        """Empty the window.

        `clear_store` runs under the window lock, so a push cannot land between
        the store being cleared and the window being emptied.
        """
        async with self._lock:
            if clear_store is not None:
                await clear_store()
            self.epoch += 1
            self.records = []
            self._pushed = []
            self.ready = True
            self.has_more = False
            self.total = 0
            self._emit(WindowEventType.RESET)

    def snapshot(self) -> dict[str, Any]:
        return {
            "records": [m.to_dict() for m in self.records],
            "next_cursor": self.next_cursor,
            "has_more": self.has_more,
            "total": self.total,
            "real_total": self.real_total,
            "keyword": self.keyword,
            "epoch": self.epoch,
        }
