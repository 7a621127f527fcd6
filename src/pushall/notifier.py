"""
User-visible alerts for newly received messages.

Backends:
- log: writes the alert to the log (always permitted)
- command: runs an external notifier such as `notify-send TITLE BODY`

The dispatcher is fire-and-forget: failures are logged, never raised.
"""

import asyncio
import shutil
from typing import Protocol

from .logging_setup import get_logger
from .models import PushPayload

logger = get_logger(__name__)

DEFAULT_TITLE = "Notification"


def format_title(message: PushPayload) -> str:
    """Build "pusher type @date" from whichever parts are present."""
    parts = []
    if message.pusher:
        parts.append(message.pusher)
    if message.type:
        parts.append(message.type)
    if message.date:
        parts.append(f"@{message.date}")
    return " ".join(parts) if parts else DEFAULT_TITLE


class NotifierBackend(Protocol):
    """Operations a notification backend must provide."""

    async def is_permission_granted(self) -> bool:
        ...

    async def request_permission(self) -> bool:
        ...

    async def send(self, title: str, body: str) -> None:
        ...


class LogNotifier:
    """Backend that only logs the alert."""

    async def is_permission_granted(self) -> bool:
        return True

    async def request_permission(self) -> bool:
        return True

    async def send(self, title: str, body: str) -> None:
        logger.info("🔔 %s: %s", title, body)


class CommandNotifier:
    """Backend that shells out to a desktop notifier."""

    def __init__(self, command: str = "notify-send", timeout: float = 5.0):
        self.command = command
        self.timeout = timeout

    async def is_permission_granted(self) -> bool:
        return shutil.which(self.command) is not None

    async def request_permission(self) -> bool:
        granted = await self.is_permission_granted()
        if not granted:
            logger.warning("Notifier command not found: %s", self.command)
        return granted

    async def send(self, title: str, body: str) -> None:
        proc = await asyncio.create_subprocess_exec(
            self.command, title, body,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            logger.warning("Notifier command timed out after %.0fs", self.timeout)
            return
        if proc.returncode != 0:
            logger.warning(
                "Notifier command exited %d: %s",
                proc.returncode, stderr.decode(errors="replace").strip(),
            )


class PermissionGate:
    """Asks the backend for permission until granted, then remembers the grant."""

    def __init__(self, backend: NotifierBackend):
        self.backend = backend
        self._granted = False

    @property
    def granted(self) -> bool:
        return self._granted

    async def check(self) -> bool:
        if self._granted:
            return True

        granted = await self.backend.is_permission_granted()
        if not granted:
            granted = await self.backend.request_permission()

        if granted:
            self._granted = True
            logger.info("Notification permission granted")
        return granted


class NotificationDispatcher:
    """
    Sends one alert per message when permission has been granted.

    The permission check runs inline; the send itself runs as a background
    task so a slow backend never holds up the caller.
    """

    def __init__(self, backend: NotifierBackend):
        self.backend = backend
        self.permission = PermissionGate(backend)
        self._pending: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def notify(self, message: PushPayload) -> bool:
        """Returns True when an alert was dispatched."""
        try:
            if not await self.permission.check():
                return False
        except Exception as e:
            logger.error("Notification permission check failed: %s", e)
            return False

        task = asyncio.create_task(self.backend.send(format_title(message), message.msg))
        self._pending.add(task)
        task.add_done_callback(self._on_sent)
        return True

    def _on_sent(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Notification failed: %s", error)

    async def drain(self) -> None:
        """Wait for alerts still being sent."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


def create_notifier(backend: str = "log", command: str = "notify-send") -> NotificationDispatcher:
    """
    Factory for a dispatcher with the configured backend.

    Unknown backend names fall back to logging.
    """
    if backend == "command":
        logger.info("Notifications via command: %s", command)
        return NotificationDispatcher(CommandNotifier(command))

    if backend != "log":
        logger.warning("Unknown notify backend '%s', using log", backend)
    return NotificationDispatcher(LogNotifier())
