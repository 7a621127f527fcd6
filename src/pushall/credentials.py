"""
Connection credentials: the push server endpoint and the access token.

CredentialStore persists them in a small JSON key/value file.
CredentialWatcher reconnects the stream whenever either value changes and
both are known.
"""

import asyncio
import json
import os
import tempfile
from pathlib import Path

from .connection_manager import ConnectionManager
from .logging_setup import get_logger

logger = get_logger(__name__)

ENDPOINT_KEY = "push_ws_uri"
TOKEN_KEY = "token"


class CredentialStore:
    """JSON file key/value store. Reads never raise; a missing key is None."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _read(self) -> dict:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Credential store unreadable (%s): %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def get(self, key: str) -> str | None:
        value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set(self, key: str, value: str | None) -> None:
        data = self._read()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".creds-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise

    def get_endpoint(self) -> str | None:
        return self.get(ENDPOINT_KEY)

    def set_endpoint(self, endpoint: str) -> None:
        self.set(ENDPOINT_KEY, endpoint)

    def get_token(self) -> str | None:
        return self.get(TOKEN_KEY)

    def set_token(self, token: str) -> None:
        self.set(TOKEN_KEY, token)


class CredentialWatcher:
    """
    Feeds endpoint/token changes into the connection manager.

    Each effective change (new value differs from the current one) persists
    the value and triggers one reconnect, but only once both are non-empty.
    """

    def __init__(self, store: CredentialStore, manager: ConnectionManager):
        self.store = store
        self.manager = manager
        self.endpoint = ""
        self.token = ""
        self._lock = asyncio.Lock()

    @property
    def complete(self) -> bool:
        return bool(self.endpoint and self.token)

    async def start(self) -> bool:
        """Load saved credentials and connect if both are present."""
        self.endpoint = self.store.get_endpoint() or ""
        self.token = self.store.get_token() or ""
        if not self.complete:
            logger.info("No push server configured yet")
            return False
        return await self._reconnect()

    async def update(self, endpoint: str | None = None, token: str | None = None) -> bool:
        """Apply new values; returns True if a reconnect succeeded."""
        async with self._lock:
            changed = False
            if endpoint is not None and endpoint != self.endpoint:
                self.endpoint = endpoint
                self.store.set_endpoint(endpoint)
                changed = True
            if token is not None and token != self.token:
                self.token = token
                self.store.set_token(token)
                changed = True

            if not changed:
                return False
            if not self.complete:
                logger.info("Credentials incomplete, not connecting")
                return False
            return await self._reconnect()

    async def set_endpoint(self, endpoint: str) -> bool:
        return await self.update(endpoint=endpoint)

    async def set_token(self, token: str) -> bool:
        return await self.update(token=token)

    async def _reconnect(self) -> bool:
        return await self.manager.reconnect(self.endpoint, self.token)
