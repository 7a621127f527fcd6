#!/usr/bin/env python3
"""
Consumer-facing HTTP API for pushall using FastAPI.

REST endpoints expose paging, counting and clearing of the message log plus
the live window; /events streams live window and connection changes as
Server-Sent Events.
"""
import asyncio
import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sse_starlette.sse import EventSourceResponse

from . import __version__
from .connection_manager import ConnectionManager, ConnectionState
from .credentials import CredentialWatcher
from .errors import StorageError
from .live_window import WindowEvent
from .logging_setup import get_logger
from .models import PushPayload
from .query_service import QueryService, WindowController

logger = get_logger(__name__)

MAX_PAGE_SIZE = 200
CLIENT_QUEUE_SIZE = 1000
PING_INTERVAL = 30.0


class SettingsUpdate(BaseModel):
    """Request model for changing the push server credentials."""

    endpoint: str | None = None
    token: str | None = None


class KeywordRequest(BaseModel):
    keyword: str = ""


class EventClient:
    """Represents a connected SSE client."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=CLIENT_QUEUE_SIZE)
        self.connected = True
        self.connected_at = time.time()
        self.dropped = 0

    def send(self, event: dict[str, Any]) -> None:
        """Queue an event; a full queue drops it."""
        if not self.connected:
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1

    def disconnect(self) -> None:
        self.connected = False


class ApiServer:
    """
    Owns the FastAPI app, the uvicorn server task and the SSE clients.

    Live window and connection state changes are fanned out to every
    connected /events client.
    """

    def __init__(
        self,
        host: str,
        port: int,
        service: QueryService,
        controller: WindowController,
        manager: ConnectionManager,
        watcher: CredentialWatcher | None = None,
    ):
        self.host = host
        self.port = port
        self.service = service
        self.controller = controller
        self.window = controller.window
        self.manager = manager
        self.watcher = watcher
        self.clients: dict[str, EventClient] = {}
        self.app: FastAPI | None = None
        self.server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None

        self.window.add_listener(self._on_window_event)
        self.manager.add_state_listener(self._on_state_change)

    def _on_window_event(self, event: WindowEvent) -> None:
        self.broadcast("window", event.to_dict())

    def _on_state_change(self, state: ConnectionState) -> None:
        self.broadcast("status", self._status())

    def broadcast(self, event_type: str, data: dict[str, Any]) -> None:
        """Queue an event for every connected SSE client."""
        for client in list(self.clients.values()):
            client.send({"event": event_type, "data": data})

    def _status(self) -> dict[str, Any]:
        session = self.manager.session
        return {
            "state": self.manager.state.value,
            "endpoint": self.watcher.endpoint if self.watcher else (session.url if session else None),
            "token_set": bool(self.watcher.token) if self.watcher else bool(session and session.token),
            "timestamp": int(time.time() * 1000),
        }

    def initial_events(self, client_id: str) -> list[dict[str, Any]]:
        """
        Greeting for a new /events client: `connected`, the connection
        `status`, then a full `snapshot` of the live window. Later `window`
        events carry only the change.
        """
        return [
            {
                "event": "connected",
                "data": {"client_id": client_id, "timestamp": int(time.time() * 1000)},
            },
            {"event": "status", "data": self._status()},
            {"event": "snapshot", "data": self.window.snapshot()},
        ]

    def create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            logger.info("API server starting up")
            yield
            logger.info("API server shutting down")
            self._disconnect_all_clients()

        app = FastAPI(
            title="pushall API",
            version=__version__,
            description="Paged, filterable, live-updating push message log",
            lifespan=lifespan,
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
            allow_headers=["*"],
        )

        @app.get("/api/messages")
        async def get_messages(
            limit: int = Query(default=self.service.page_size, ge=1, le=MAX_PAGE_SIZE),
            before: int | None = Query(default=None, ge=1),
            keyword: str | None = None,
        ):
            """One keyset page, newest first."""
            page = await self.service.fetch_page(limit, before, keyword)
            return page.to_dict()

        @app.get("/api/messages/count")
        async def get_message_count(keyword: str | None = None):
            return {"count": await self.service.fetch_count(keyword)}

        @app.post("/api/messages", status_code=201)
        async def add_message(payload: PushPayload):
            """Append a message locally and show it in the live window."""
            try:
                stored = await self.service.append(payload)
            except StorageError as e:
                raise HTTPException(status_code=400, detail=str(e))
            await self.window.push(stored)
            return stored.to_dict()

        @app.delete("/api/messages")
        async def clear_messages():
            await self.controller.clear_all()
            return {"success": True}

        @app.get("/api/window")
        async def get_window():
            return self.window.snapshot()

        @app.post("/api/window/more")
        async def load_more():
            loaded = await self.controller.load_more()
            return {"loaded": loaded, **self.window.snapshot()}

        @app.post("/api/window/keyword", status_code=202)
        async def set_keyword(request: KeywordRequest):
            """Debounced; the window reloads once typing settles."""
            self.controller.set_keyword(request.keyword)
            return {"keyword": request.keyword, "debounce_ms": int(self.controller.debounce * 1000)}

        @app.post("/api/window/refresh")
        async def refresh_window():
            await self.controller.refresh()
            return self.window.snapshot()

        @app.get("/api/status")
        async def get_status():
            return self._status()

        @app.get("/api/settings")
        async def get_settings():
            if not self.watcher:
                raise HTTPException(status_code=503, detail="Settings not available")
            return {"endpoint": self.watcher.endpoint, "token_set": bool(self.watcher.token)}

        @app.put("/api/settings")
        async def update_settings(request: SettingsUpdate):
            if not self.watcher:
                raise HTTPException(status_code=503, detail="Settings not available")
            connected = await self.watcher.update(request.endpoint, request.token)
            return {"connected": connected, **self._status()}

        @app.get("/events")
        async def sse_endpoint(request: Request):
            """Live window and connection updates as Server-Sent Events."""
            client_id = str(uuid.uuid4())[:8]
            client = EventClient(client_id)
            self.clients[client_id] = client
            logger.info("SSE client connected: %s", client_id)

            async def event_generator():
                try:
                    for event in self.initial_events(client_id):
                        yield {"event": event["event"], "data": json.dumps(event["data"])}

                    while client.connected:
                        if await request.is_disconnected():
                            break
                        try:
                            event = await asyncio.wait_for(
                                client.queue.get(), timeout=PING_INTERVAL
                            )
                        except asyncio.TimeoutError:
                            yield {
                                "event": "ping",
                                "data": json.dumps({"timestamp": int(time.time() * 1000)}),
                            }
                            continue
                        yield {"event": event["event"], "data": json.dumps(event["data"])}
                finally:
                    client.disconnect()
                    self.clients.pop(client_id, None)
                    logger.info(
                        "SSE client disconnected: %s (%d dropped)", client_id, client.dropped
                    )

            return EventSourceResponse(event_generator())

        @app.get("/health")
        async def health_check():
            return {
                "status": "healthy",
                "stream": self.manager.state.value,
                "sse_clients": len(self.clients),
                "timestamp": int(time.time() * 1000),
            }

        return app

    def _disconnect_all_clients(self) -> None:
        for client in self.clients.values():
            client.disconnect()
        self.clients.clear()

    async def start_server(self) -> None:
        """Start the FastAPI server in a background task."""
        self.app = self.create_app()

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
            access_log=False,
        )
        self.server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._run_server())
        logger.info("API server started on http://%s:%d", self.host, self.port)

    async def _run_server(self) -> None:
        try:
            await self.server.serve()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error("API server error: %s", e)

    async def stop_server(self) -> None:
        """Stop the FastAPI server."""
        if self.server:
            self.server.should_exit = True

            if self._server_task:
                try:
                    await asyncio.wait_for(self._server_task, timeout=5.0)
                except asyncio.TimeoutError:
                    self._server_task.cancel()
                    try:
                        await self._server_task
                    except asyncio.CancelledError:
                        pass

        self._disconnect_all_clients()
        self.window.remove_listener(self._on_window_event)
        self.manager.remove_state_listener(self._on_state_change)
        logger.info("API server stopped")
