#!/usr/bin/env python3
"""
Centralized configuration for pushall.

Provides dataclass-based configuration with defaults. Supports environment
variable overrides for deployment flexibility. Connection credentials
(endpoint, token) are not part of this file; they live in the credential
store so they can be changed at runtime.
"""
import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .logging_setup import get_logger

logger = get_logger(__name__)

API_HOST = "127.0.0.1"
API_PORT = 2985


@dataclass
class StreamConfig:
    """Push server connection behaviour."""

    connect_timeout: float = 30.0
    queue_size: int = 1000
    reconnect_attempts: int = 0     # 0 = stay Closed after a remote close
    reconnect_max_delay: float = 60.0


@dataclass
class StorageConfig:
    """Message storage configuration."""

    db_path: str = "~/.local/share/pushall/messages.db"


@dataclass
class QueryConfig:
    """Live window paging."""

    page_size: int = 20
    debounce_ms: int = 500


@dataclass
class ApiConfig:
    """Consumer-facing HTTP API."""

    host: str = API_HOST
    port: int = API_PORT


@dataclass
class NotifyConfig:
    """Desktop alerts for new messages."""

    backend: str = "log"            # "log" | "command"
    command: str = "notify-send"


@dataclass
class Config:
    """Main pushall configuration."""

    stream: StreamConfig = field(default_factory=StreamConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    api: ApiConfig = field(default_factory=ApiConfig)
    notify: NotifyConfig = field(default_factory=NotifyConfig)
    credentials_path: str = "~/.config/pushall/appStore.json"
    log_file: str | None = None

    @classmethod
    def load(cls, path: str | Path | None = None) -> "Config":
        """
        Load configuration from file.

        Args:
            path: Path to config file. If None, uses environment-based default.

        Returns:
            Config instance with loaded values.
        """
        if path is None:
            path = cls._get_default_path()

        path = Path(path).expanduser()

        if not path.exists():
            logger.warning("Config file not found: %s, using defaults", path)
            return cls._from_dict({})

        with open(path, encoding="utf-8") as f:
            data = json.load(f)

        logger.info("Loaded config from %s", path)
        return cls._from_dict(data)

    @staticmethod
    def _get_default_path() -> Path:
        """Get default config path based on environment."""
        explicit = os.getenv("PUSHALL_CONFIG")
        if explicit:
            return Path(explicit)
        if os.getenv("PUSHALL_ENV") == "dev":
            logger.debug("DEV environment detected")
            return Path("~/.config/pushall/config.dev.json")
        return Path("~/.config/pushall/config.json")

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "Config":
        """Create Config from dictionary (JSON data), then apply env overrides."""
        stream = StreamConfig(
            connect_timeout=float(data.get("CONNECT_TIMEOUT", 30.0)),
            queue_size=int(data.get("QUEUE_SIZE", 1000)),
            reconnect_attempts=int(data.get("RECONNECT_ATTEMPTS", 0)),
            reconnect_max_delay=float(data.get("RECONNECT_MAX_DELAY", 60.0)),
        )

        storage = StorageConfig(
            db_path=os.getenv(
                "PUSHALL_DB_PATH", data.get("DB_PATH", StorageConfig.db_path)
            ),
        )

        query = QueryConfig(
            page_size=int(data.get("PAGE_SIZE", 20)),
            debounce_ms=int(data.get("DEBOUNCE_MS", 500)),
        )

        api = ApiConfig(
            host=os.getenv("PUSHALL_API_HOST", data.get("API_HOST", API_HOST)),
            port=int(os.getenv("PUSHALL_API_PORT", data.get("API_PORT", API_PORT))),
        )

        notify = NotifyConfig(
            backend=os.getenv("PUSHALL_NOTIFY_BACKEND", data.get("NOTIFY_BACKEND", "log")),
            command=data.get("NOTIFY_COMMAND", "notify-send"),
        )

        return cls(
            stream=stream,
            storage=storage,
            query=query,
            api=api,
            notify=notify,
            credentials_path=os.getenv(
                "PUSHALL_CREDENTIALS_PATH",
                data.get("CREDENTIALS_PATH", cls.credentials_path),
            ),
            log_file=data.get("LOG_FILE"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Export config to dictionary for saving."""
        return {
            "CONNECT_TIMEOUT": self.stream.connect_timeout,
            "QUEUE_SIZE": self.stream.queue_size,
            "RECONNECT_ATTEMPTS": self.stream.reconnect_attempts,
            "RECONNECT_MAX_DELAY": self.stream.reconnect_max_delay,
            "DB_PATH": self.storage.db_path,
            "PAGE_SIZE": self.query.page_size,
            "DEBOUNCE_MS": self.query.debounce_ms,
            "API_HOST": self.api.host,
            "API_PORT": self.api.port,
            "NOTIFY_BACKEND": self.notify.backend,
            "NOTIFY_COMMAND": self.notify.command,
            "CREDENTIALS_PATH": self.credentials_path,
            "LOG_FILE": self.log_file,
        }

    def save(self, path: str | Path) -> None:
        """Save config to file."""
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info("Saved config to %s", path)

    @property
    def db_path(self) -> Path:
        return Path(self.storage.db_path).expanduser()

    @property
    def debounce_seconds(self) -> float:
        return self.query.debounce_ms / 1000
