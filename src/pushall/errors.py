"""Typed exceptions raised by the storage and streaming layers.

API routes map them to HTTP status codes; the ingestion path logs them
and keeps running.
"""


class PushAllError(Exception):
    """Base exception for all pushall errors."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class StorageError(PushAllError):
    """A row could not be written (missing msg, constraint violation)."""


class StreamConnectionError(PushAllError, ConnectionError):
    """Missing endpoint/token or a failed WebSocket handshake."""

    def __init__(self, message: str, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class FrameDecodeError(PushAllError):
    """An inbound text frame is not a valid message payload."""

    def __init__(self, message: str, raw: str) -> None:
        super().__init__(message)
        self.raw = raw
