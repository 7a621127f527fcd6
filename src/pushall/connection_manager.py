"""
Streaming connection to the push server.

Owns at most one WebSocket connection at a time. Inbound text frames are
decoded into PushPayload objects and published on a bounded asyncio.Queue
that the ingestion pipeline consumes.

State machine:
    Closed --connect()--> Pending --handshake ok--> Open
    Pending --handshake fail--> Closed
    Open --disconnect() or remote close--> Closed
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable
from urllib.parse import urlencode

import aiohttp
from pydantic import ValidationError

from .errors import FrameDecodeError, StreamConnectionError
from .logging_setup import get_logger
from .models import PushPayload

logger = get_logger(__name__)

# Literal greeting the push server sends right after the upgrade
ACK_TEXT = "connected"


class ConnectionState(Enum):
    """Streaming connection states"""
    CLOSED = "Closed"
    PENDING = "Pending"
    OPEN = "Open"


@dataclass
class StreamSession:
    """One connection attempt and, once open, its socket and reader task."""
    url: str
    token: str
    ws: aiohttp.ClientWebSocketResponse | None = None
    reader: asyncio.Task | None = None
    opened_at: float = field(default_factory=time.time)
    closing: bool = False
    frames_received: int = 0
    frames_dropped: int = 0


def build_stream_url(url: str, token: str) -> str:
    """Append the token query parameter to the endpoint."""
    separator = "&" if "?" in url else "?"
    return f"{url}{separator}{urlencode({'token': token})}"


def decode_frame(raw: str) -> PushPayload:
    """Decode one JSON text frame into a PushPayload.

    Raises:
        FrameDecodeError: not JSON, not an object, or missing/invalid fields.
    """
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"Invalid JSON: {e}", raw) from e

    if not isinstance(data, dict):
        raise FrameDecodeError(f"Expected JSON object, got {type(data).__name__}", raw)

    try:
        return PushPayload.model_validate(data)
    except ValidationError as e:
        raise FrameDecodeError(f"Invalid payload: {e.error_count()} error(s)", raw) from e


StateListener = Callable[[ConnectionState], None]


class ConnectionManager:
    """
    Lifecycle owner for the push server WebSocket.

    Calling connect() while a connection is Open or Pending tears the old one
    down first, so there is never more than one socket or reader task.
    """

    def __init__(
        self,
        queue: asyncio.Queue[PushPayload] | None = None,
        *,
        queue_size: int = 1000,
        connect_timeout: float = 30.0,
        reconnect_attempts: int = 0,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 60.0,
        http_session: aiohttp.ClientSession | None = None,
    ):
        self._queue: asyncio.Queue[PushPayload] = (
            queue if queue is not None else asyncio.Queue(maxsize=queue_size)
        )
        self.connect_timeout = connect_timeout
        self.reconnect_attempts = reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.reconnect_max_delay = reconnect_max_delay

        self._http = http_session
        self._owns_http = http_session is None
        self._session: StreamSession | None = None
        self._state = ConnectionState.CLOSED
        self._lock = asyncio.Lock()
        self._listeners: list[StateListener] = []
        self._backoff_task: asyncio.Task | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def session(self) -> StreamSession | None:
        """The current connection, or None when Closed."""
        return self._session

    @property
    def messages(self) -> asyncio.Queue[PushPayload]:
        """Decoded messages waiting for the ingestion pipeline."""
        return self._queue

    @property
    def is_open(self) -> bool:
        return self._state == ConnectionState.OPEN

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def remove_state_listener(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _set_state(self, state: ConnectionState) -> None:
        if state == self._state:
            return
        logger.info("Stream state %s → %s", self._state.value, state.value)
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                logger.error("State listener failed: %s", e)

    async def _ensure_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        return self._http

    async def connect(self, url: str | None, token: str | None) -> StreamSession:
        """Open a connection to `<url>?token=<token>`.

        Any existing connection is closed first.

        Raises:
            StreamConnectionError: empty url/token, or the handshake failed.
        """
        if not url or not token:
            raise StreamConnectionError("Endpoint and token are required", url)

        self._cancel_backoff()

        async with self._lock:
            if self._session is not None:
                await self._teardown()
            return await self._open(url, token)

    async def reconnect(self, url: str | None, token: str | None) -> bool:
        """connect() that logs failures instead of raising them."""
        try:
            await self.connect(url, token)
            return True
        except StreamConnectionError as e:
            logger.error("Connect to %s failed: %s", url, e)
            return False

    async def _open(self, url: str, token: str) -> StreamSession:
        session = StreamSession(url=url, token=token)
        self._session = session
        self._set_state(ConnectionState.PENDING)

        http = await self._ensure_http()
        logger.info("Connecting to stream %s", url)
        try:
            ws = await asyncio.wait_for(
                http.ws_connect(build_stream_url(url, token)),
                timeout=self.connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self._session = None
            self._set_state(ConnectionState.CLOSED)
            reason = "timed out" if isinstance(e, asyncio.TimeoutError) else str(e)
            raise StreamConnectionError(f"Handshake failed: {reason}", url) from e

        session.ws = ws
        session.reader = asyncio.create_task(self._read_loop(session))
        self._set_state(ConnectionState.OPEN)
        return session

    async def disconnect(self) -> None:
        """Gracefully close the current connection, if any."""
        self._cancel_backoff()
        async with self._lock:
            await self._teardown()

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            return

        session.closing = True
        self._session = None

        if session.reader and not session.reader.done():
            session.reader.cancel()
            try:
                await session.reader
            except asyncio.CancelledError:
                pass

        if session.ws is not None and not session.ws.closed:
            try:
                await session.ws.close()
            except (aiohttp.ClientError, OSError) as e:
                logger.warning("Error while closing stream: %s", e)

        logger.info(
            "Disconnected from %s (%d frames, %d dropped)",
            session.url, session.frames_received, session.frames_dropped,
        )
        self._set_state(ConnectionState.CLOSED)

    async def close(self) -> None:
        """Disconnect and release the HTTP client session."""
        await self.disconnect()
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def _read_loop(self, session: StreamSession) -> None:
        ws = session.ws
        try:
            async for frame in ws:
                if frame.type == aiohttp.WSMsgType.ERROR:
                    logger.error("Stream error: %s", ws.exception())
                    break
                await self.handle_frame(frame, session)
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError) as e:
            logger.error("Stream read failed: %s", e)

        if session.closing or session is not self._session:
            return

        # Remote side closed the socket
        logger.warning("Stream closed by remote (code %s)", ws.close_code)
        self._session = None
        self._set_state(ConnectionState.CLOSED)
        self._schedule_backoff(session.url, session.token)
        if not ws.closed:
            await ws.close()

    async def handle_frame(self, frame: aiohttp.WSMessage, session: StreamSession | None = None) -> None:
        """Classify one frame and publish it when it carries a message."""
        if session is not None:
            session.frames_received += 1

        if frame.type != aiohttp.WSMsgType.TEXT:
            logger.warning("Non-text frame ignored: %s", frame.type.name)
            if session is not None:
                session.frames_dropped += 1
            return

        if frame.data == ACK_TEXT:
            logger.debug("Server acknowledged connection")
            return

        try:
            payload = decode_frame(frame.data)
        except FrameDecodeError as e:
            logger.warning("Dropped malformed frame: %s", e)
            if session is not None:
                session.frames_dropped += 1
            return

        logger.debug("Frame decoded: %s", payload.msg[:40])
        await self._queue.put(payload)

    def _schedule_backoff(self, url: str, token: str) -> None:
        if self.reconnect_attempts <= 0:
            return
        self._backoff_task = asyncio.create_task(self._reconnect_with_backoff(url, token))

    def _cancel_backoff(self) -> None:
        task = self._backoff_task
        if task is None or task.done() or task is asyncio.current_task():
            return
        task.cancel()
        self._backoff_task = None

    async def _reconnect_with_backoff(self, url: str, token: str) -> None:
        """Bounded exponential backoff after a remote close."""
        for attempt in range(1, self.reconnect_attempts + 1):
            delay = min(
                self.reconnect_base_delay * 2 ** (attempt - 1),
                self.reconnect_max_delay,
            )
            logger.info(
                "Reconnect attempt %d/%d in %.1fs", attempt, self.reconnect_attempts, delay
            )
            await asyncio.sleep(delay)
            if await self.reconnect(url, token):
                return
        logger.error("Giving up on %s after %d attempts", url, self.reconnect_attempts)
