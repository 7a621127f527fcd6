"""
Message models shared by the stream decoder, the store and the HTTP API.

PushPayload is what producers send (WebSocket frame or POST body); Message is
a stored row with its store-assigned id and created_at.
"""
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logging_setup import get_logger

logger = get_logger(__name__)


class Level(str, Enum):
    """Severity levels understood by the display."""
    CRITICAL = "critical"
    INFO = "info"
    SUCCESS = "success"
    UPSELL = "upsell"
    WARNING = "warning"


DEFAULT_LEVEL = Level.INFO

# Columns returned by every read, in schema order
MESSAGE_FIELDS = ("id", "created_at", "pusher", "msg", "type", "level", "date")

# Free-text columns searched by a keyword filter
SEARCH_FIELDS = ("pusher", "type", "level", "msg", "date")


class PushPayload(BaseModel):
    """Inbound message as relayed by the push server."""

    model_config = ConfigDict(extra="ignore")

    msg: str = Field(min_length=1)
    pusher: str | None = None
    type: str | None = None
    level: Level = DEFAULT_LEVEL
    date: str | None = None

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_LEVEL
        if isinstance(value, str):
            try:
                return Level(value.lower())
            except ValueError:
                logger.debug("Unknown level %r, using %s", value, DEFAULT_LEVEL.value)
                return DEFAULT_LEVEL
        return value


class Message(PushPayload):
    """A stored message row."""

    id: int
    created_at: int

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Message":
        return cls.model_validate(row)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
