"""
Ingestion pipeline: decoded stream messages → alert, store, live window.

Per message the order is fixed:
1) dispatch the alert (sent in the background, never blocks storage)
2) append to the store, which assigns id and created_at
3) push the stored record onto the head of the live window
"""

import asyncio
from typing import Protocol

from .errors import StorageError
from .live_window import LiveWindow
from .logging_setup import get_logger
from .models import Message, PushPayload
from .sqlite_storage import SQLiteStorage

logger = get_logger(__name__)


class Notifier(Protocol):
    async def notify(self, message: PushPayload) -> bool:
        ...


class IngestionPipeline:
    """Consumes the connection manager's queue until stopped."""

    def __init__(
        self,
        queue: asyncio.Queue[PushPayload],
        storage: SQLiteStorage,
        window: LiveWindow,
        notifier: Notifier | None = None,
    ):
        self.queue = queue
        self.storage = storage
        self.window = window
        self.notifier = notifier
        self._task: asyncio.Task | None = None
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def handle(self, payload: PushPayload) -> Message | None:
        """Process one message. Returns the stored record, or None if it was rejected."""
        if self.notifier is not None:
            try:
                await self.notifier.notify(payload)
            except Exception as e:
                logger.error("Notifier raised: %s", e)

        try:
            stored = await self.storage.append(payload)
        except StorageError as e:
            self.failed += 1
            logger.error("Message not stored: %s", e)
            return None

        await self.window.push(stored)
        self.processed += 1
        logger.info(
            "📡 Message %d from %s [%s]",
            stored.id, stored.pusher or "anonymous", stored.level.value,
        )
        return stored

    async def run(self) -> None:
        while True:
            payload = await self.queue.get()
            try:
                await self.handle(payload)
            except Exception as e:
                self.failed += 1
                logger.exception("Ingestion error: %s", e)
            finally:
                self.queue.task_done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self.run())
        logger.info("Ingestion pipeline started")

    async def stop(self) -> None:
        if not self.running:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(
            "Ingestion pipeline stopped (%d stored, %d failed)", self.processed, self.failed
        )
