"""Tests for paged reads and the window controller."""

import asyncio

import pytest

from pushall.live_window import LiveWindow
from pushall.query_service import QueryService, WindowController


class TestFetchPage:
    """Keyset pages over a 25 message log."""

    @pytest.mark.asyncio
    async def test_walks_whole_log(self, service, add_messages):
        await add_messages(25)

        first = await service.fetch_page(20)
        assert [m.id for m in first.records] == list(range(25, 5, -1))
        assert first.next_cursor == 6
        assert first.has_more is True

        second = await service.fetch_page(20, before_id=first.next_cursor)
        assert [m.id for m in second.records] == [5, 4, 3, 2, 1]
        assert second.has_more is False

    @pytest.mark.asyncio
    async def test_exact_page_reports_more(self, service, add_messages):
        await add_messages(20)

        first = await service.fetch_page(20)
        assert first.has_more is True

        second = await service.fetch_page(20, before_id=first.next_cursor)
        assert second.records == []
        assert second.next_cursor is None
        assert second.has_more is False

    @pytest.mark.asyncio
    async def test_default_limit_is_page_size(self, storage, add_messages):
        await add_messages(8)
        page = await QueryService(storage, page_size=5).fetch_page()
        assert len(page.records) == 5

    @pytest.mark.asyncio
    async def test_zero_limit_returns_nothing(self, service, add_messages):
        await add_messages(25)
        page = await service.fetch_page(0)
        assert page.records == []
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_to_dict(self, service, add_messages):
        await add_messages(2)
        data = (await service.fetch_page(20)).to_dict()
        assert [r["id"] for r in data["records"]] == [2, 1]
        assert data["has_more"] is False
        assert data["next_cursor"] == 1


class TestFetchCount:
    @pytest.mark.asyncio
    async def test_count(self, service, add_messages):
        await add_messages(25)
        assert await service.fetch_count() == 25

    @pytest.mark.asyncio
    async def test_failure_reads_as_zero(self, service, monkeypatch):
        async def broken(keyword=None):
            raise RuntimeError("database is locked")

        monkeypatch.setattr(service.storage, "count", broken)
        assert await service.fetch_count("x") == 0


class TestWindowController:
    @pytest.mark.asyncio
    async def test_refresh_then_load_more(self, controller, window, add_messages):
        await add_messages(25)

        assert await controller.refresh()
        assert len(window.records) == 20
        assert window.total == 25
        assert window.has_more is True

        assert await controller.load_more()
        assert [m.id for m in window.records] == list(range(25, 0, -1))
        assert window.has_more is False

        # Nothing left to load
        assert await controller.load_more() is False

    @pytest.mark.asyncio
    async def test_load_more_before_first_page_is_noop(self, controller, window, add_messages):
        await add_messages(3)
        assert await controller.load_more() is False
        assert window.records == []

    @pytest.mark.asyncio
    async def test_concurrent_load_more_fetches_once(self, controller, window, add_messages):
        await add_messages(45)
        await controller.refresh()

        results = await asyncio.gather(controller.load_more(), controller.load_more())
        assert sorted(results) == [False, True]
        assert len(window.records) == 40

    @pytest.mark.asyncio
    async def test_keyword_filter(self, controller, window, storage):
        await storage.append({"msg": "disk full", "pusher": "nas"})
        await storage.append({"msg": "hello"})
        await storage.append({"msg": "disk ok"})

        await controller.refresh("disk")
        assert [m.msg for m in window.records] == ["disk ok", "disk full"]
        assert window.total == 2

    @pytest.mark.asyncio
    async def test_set_keyword_is_debounced(self, controller, window, storage):
        await storage.append({"msg": "alpha"})
        await storage.append({"msg": "beta"})
        await controller.refresh()

        controller.set_keyword("al")
        task = controller.set_keyword("beta")
        assert await task is True

        assert window.keyword == "beta"
        assert [m.msg for m in window.records] == ["beta"]

    @pytest.mark.asyncio
    async def test_superseded_keyword_never_applies(self, controller, window, storage):
        await storage.append({"msg": "alpha"})
        first = controller.set_keyword("alpha")
        second = controller.set_keyword("")
        await second

        assert first.cancelled()
        assert window.keyword == ""

    @pytest.mark.asyncio
    async def test_slow_stale_page_is_dropped(self, storage, add_messages):
        """A page for an older filter landing after a newer one is discarded."""
        await add_messages(5)
        await storage.append({"msg": "needle"})

        service = QueryService(storage, page_size=20)
        window = LiveWindow()
        controller = WindowController(service, window, debounce=0)

        release = asyncio.Event()
        original = service.fetch_page

        async def slow_fetch(limit=None, before_id=None, keyword=None):
            if keyword == "":
                await release.wait()
            return await original(limit, before_id, keyword)

        service.fetch_page = slow_fetch

        stale = asyncio.create_task(controller.refresh(""))
        await asyncio.sleep(0)
        assert await controller.refresh("needle")
        release.set()
        assert await stale is False

        assert [m.msg for m in window.records] == ["needle"]

    @pytest.mark.asyncio
    async def test_clear_all(self, controller, window, storage, add_messages):
        await add_messages(5)
        await controller.refresh()

        await controller.clear_all()
        assert window.records == []
        assert window.total == 0
        assert await storage.count() == 0

        stored = await storage.append({"msg": "after clear"})
        assert stored.id == 1

    @pytest.mark.asyncio
    async def test_push_during_clear_survives(
        self, controller, window, storage, add_messages, monkeypatch
    ):
        await add_messages(5)
        await controller.refresh()

        clearing = asyncio.Event()
        release = asyncio.Event()
        original = storage.clear

        async def slow_clear():
            await original()
            clearing.set()
            await release.wait()

        monkeypatch.setattr(storage, "clear", slow_clear)

        clear = asyncio.create_task(controller.clear_all())
        await clearing.wait()
        # Stored after the wipe but before the window is emptied
        stored = await storage.append({"msg": "late"})
        push = asyncio.create_task(window.push(stored))
        await asyncio.sleep(0)
        release.set()
        await clear
        await push

        assert [m.msg for m in window.records] == ["late"]
        assert window.total == 1
        assert await storage.count() == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_keyword(self, controller):
        task = controller.set_keyword("x")
        await controller.stop()
        assert task.cancelled()
