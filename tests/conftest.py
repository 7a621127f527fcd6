"""Shared pytest fixtures.

Every storage fixture gets its own file-based SQLite database under tmp_path,
so tests never share ids or rows.
"""

import logging

import pytest

from pushall.live_window import LiveWindow
from pushall.models import PushPayload
from pushall.query_service import QueryService, WindowController
from pushall.sqlite_storage import create_sqlite_storage


@pytest.fixture
async def storage(tmp_path):
    """Initialized message store in a temp directory."""
    store = await create_sqlite_storage(tmp_path / "messages.db")
    yield store
    await store.close()


@pytest.fixture
def service(storage):
    return QueryService(storage, page_size=20)


@pytest.fixture
def window():
    return LiveWindow()


@pytest.fixture
def controller(service, window):
    # Short debounce keeps filter tests fast
    return WindowController(service, window, debounce=0.05)


@pytest.fixture
def add_messages(storage):
    """Append `count` messages numbered 1..count; returns the stored rows."""

    async def _add(count, **fields):
        return [
            await storage.append(PushPayload(msg=f"message {i}", **fields))
            for i in range(1, count + 1)
        ]

    return _add


@pytest.fixture
def isolated_logging():
    """Put the root logger back after a test that calls setup_logging()."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)
