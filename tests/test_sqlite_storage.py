"""Tests for the SQLite message store."""

import pytest

from pushall.errors import StorageError
from pushall.models import Level, PushPayload
from pushall.sqlite_storage import build_keyword_filter, create_sqlite_storage, escape_like


class TestAppend:
    """append() assigns ids and created_at."""

    @pytest.mark.asyncio
    async def test_ids_start_at_one_and_increase(self, storage, add_messages):
        stored = await add_messages(3)
        assert [m.id for m in stored] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_returns_full_record(self, storage):
        stored = await storage.append(
            PushPayload(msg="deploy done", pusher="ci", type="build", level="success", date="2026-01-21")
        )
        assert stored.msg == "deploy done"
        assert stored.pusher == "ci"
        assert stored.type == "build"
        assert stored.level == Level.SUCCESS
        assert stored.date == "2026-01-21"
        assert stored.created_at > 0

    @pytest.mark.asyncio
    async def test_optional_fields_stay_null(self, storage):
        stored = await storage.append(PushPayload(msg="hi"))
        assert stored.pusher is None
        assert stored.type is None
        assert stored.date is None
        assert stored.level == Level.INFO

    @pytest.mark.asyncio
    async def test_accepts_plain_mapping(self, storage):
        stored = await storage.append({"msg": "from dict", "level": None})
        assert stored.id == 1
        assert stored.level == Level.INFO

    @pytest.mark.asyncio
    @pytest.mark.parametrize("data", [{}, {"msg": ""}, {"msg": None}, {"msg": 42}])
    async def test_missing_msg_rejected(self, storage, data):
        with pytest.raises(StorageError):
            await storage.append(data)
        assert await storage.count() == 0

    @pytest.mark.asyncio
    async def test_ids_never_reused_without_clear(self, tmp_path):
        db = tmp_path / "reopen.db"
        first = await create_sqlite_storage(db)
        await first.append({"msg": "one"})
        await first.append({"msg": "two"})
        await first.close()

        second = await create_sqlite_storage(db)
        stored = await second.append({"msg": "three"})
        assert stored.id == 3


class TestQuery:
    """query() ordering, keyset bound and limits."""

    @pytest.mark.asyncio
    async def test_newest_first(self, storage, add_messages):
        await add_messages(5)
        rows = await storage.query(10)
        assert [m.id for m in rows] == [5, 4, 3, 2, 1]

    @pytest.mark.asyncio
    async def test_before_id_is_exclusive(self, storage, add_messages):
        await add_messages(5)
        rows = await storage.query(10, before_id=3)
        assert [m.id for m in rows] == [2, 1]

    @pytest.mark.asyncio
    async def test_limit(self, storage, add_messages):
        await add_messages(5)
        rows = await storage.query(2)
        assert [m.id for m in rows] == [5, 4]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, -1])
    async def test_non_positive_limit_returns_nothing(self, storage, add_messages, limit):
        await add_messages(3)
        assert await storage.query(limit) == []

    @pytest.mark.asyncio
    async def test_empty_store(self, storage):
        assert await storage.query(20) == []
        assert await storage.count() == 0


class TestKeyword:
    """Keyword filter is a substring match over the searchable columns."""

    @pytest.mark.asyncio
    async def test_matches_any_column(self, storage):
        await storage.append({"msg": "disk almost full", "pusher": "nas"})
        await storage.append({"msg": "hello", "pusher": "alice"})
        await storage.append({"msg": "backup", "type": "alert"})
        await storage.append({"msg": "plain", "date": "2026-03-01"})

        assert [m.msg for m in await storage.query(10, keyword="full")] == ["disk almost full"]
        assert [m.msg for m in await storage.query(10, keyword="alic")] == ["hello"]
        assert [m.msg for m in await storage.query(10, keyword="alert")] == ["backup"]
        assert [m.msg for m in await storage.query(10, keyword="2026-03")] == ["plain"]

    @pytest.mark.asyncio
    async def test_matches_level(self, storage):
        await storage.append({"msg": "a", "level": "critical"})
        await storage.append({"msg": "b"})
        rows = await storage.query(10, keyword="critical")
        assert [m.msg for m in rows] == ["a"]

    @pytest.mark.asyncio
    async def test_keyword_and_bound_combined(self, storage):
        for i in range(1, 7):
            await storage.append({"msg": f"{'even' if i % 2 == 0 else 'odd'} {i}"})
        rows = await storage.query(10, before_id=6, keyword="even")
        assert [m.id for m in rows] == [4, 2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("keyword", ["", "   ", None])
    async def test_blank_keyword_matches_everything(self, storage, add_messages, keyword):
        await add_messages(3)
        assert len(await storage.query(10, keyword=keyword)) == 3
        assert await storage.count(keyword) == 3

    @pytest.mark.asyncio
    async def test_wildcards_match_literally(self, storage):
        await storage.append({"msg": "100% done"})
        await storage.append({"msg": "1000 done"})
        await storage.append({"msg": "snake_case"})
        await storage.append({"msg": "snakeXcase"})

        assert [m.msg for m in await storage.query(10, keyword="0%")] == ["100% done"]
        assert [m.msg for m in await storage.query(10, keyword="e_c")] == ["snake_case"]

    @pytest.mark.asyncio
    async def test_injection_attempt_is_plain_text(self, storage, add_messages):
        await add_messages(3)
        keyword = "x' OR '1'='1"
        assert await storage.query(10, keyword=keyword) == []
        assert await storage.count(keyword) == 0

        stored = await storage.append({"msg": keyword})
        rows = await storage.query(10, keyword=keyword)
        assert [m.id for m in rows] == [stored.id]

    @pytest.mark.asyncio
    async def test_count_ignores_pagination(self, storage, add_messages):
        await add_messages(25)
        assert await storage.count() == 25
        assert await storage.count("message 1") == 11  # 1, 10..19


class TestClear:
    """clear() empties the log and restarts ids."""

    @pytest.mark.asyncio
    async def test_clear_then_append_restarts_at_one(self, storage, add_messages):
        await add_messages(4)
        await storage.clear()

        assert await storage.count() == 0
        assert await storage.query(20) == []

        stored = await storage.append({"msg": "fresh"})
        assert stored.id == 1

    @pytest.mark.asyncio
    async def test_clear_empty_store(self, storage):
        await storage.clear()
        assert await storage.count() == 0


class TestKeywordFilterBuilder:
    """SQL generation never interpolates the keyword."""

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"

    def test_blank_produces_no_condition(self):
        assert build_keyword_filter("  ") == (None, ())

    def test_keyword_is_bound_not_inlined(self):
        sql, params = build_keyword_filter("drop")
        assert "drop" not in sql
        assert sql.count("LIKE ?") == 5
        assert params == ("%drop%",) * 5
