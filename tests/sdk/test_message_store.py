"""Tests for SQLiteMessageStore."""

from __future__ import annotations

import asyncio

import aiosqlite
import pytest

from privdm.protocol.errors import StoreError
from privdm.protocol.types import ONE_DAY, THREE_DAYS
from privdm.sdk.message_store import SQLiteMessageStore


class TestSaveMessage:
    async def test_dedup_returns_true_then_false(self, store, make_message):
        msg = make_message()
        assert await store.save_message(msg, 1000) is True
        assert await store.save_message(msg, 1000) is False

        [conv] = await store.load_conversations()
        assert conv.message_count == 1
        assert len(await store.load_messages(msg.conversation_id)) == 1

    async def test_same_message_in_two_wraps_counted_once(self, store, make_message):
        first = make_message(wrap_id="wrap-1")
        second = make_message(wrap_id="wrap-2")
        assert first.id == second.id
        assert await store.save_message(first, 1000)
        assert not await store.save_message(second, 1001)
        assert (await store.load_conversations())[0].message_count == 1

    async def test_concurrent_saves_of_one_message(self, store, make_message):
        msg = make_message()
        results = await asyncio.gather(*(store.save_message(msg, 1000) for _ in range(5)))
        assert sorted(results) == [False, False, False, False, True]
        assert (await store.load_conversations())[0].message_count == 1

    async def test_message_roundtrip(self, store, make_message):
        msg = make_message(content="héllo")
        await store.save_message(msg, 1000)
        [loaded] = await store.load_messages(msg.conversation_id)
        assert loaded == msg


class TestConversations:
    async def test_preview_not_regressed_by_older_message(self, store, make_message):
        newer = make_message(content="newer", created_at=2000)
        older = make_message(content="older", created_at=1000)
        await store.save_message(newer, 5000)
        await store.save_message(older, 6000)

        [conv] = await store.load_conversations()
        assert conv.last_message.content == "newer"
        assert conv.message_count == 2

    async def test_preview_advances_on_equal_timestamp(self, store, make_message):
        await store.save_message(make_message(content="first", created_at=1000), 1)
        await store.save_message(make_message(content="second", created_at=1000), 2)
        [conv] = await store.load_conversations()
        assert conv.last_message.content == "second"

    async def test_sorted_most_recent_first(self, store, make_message):
        a = make_message(recipients=("b2" * 32,), created_at=1000)
        b = make_message(recipients=("c3" * 32,), created_at=3000)
        c = make_message(recipients=("d4" * 32,), created_at=2000)
        for m in (a, b, c):
            await store.save_message(m, 1)
        ids = [conv.id for conv in await store.load_conversations()]
        assert ids == [b.conversation_id, c.conversation_id, a.conversation_id]

    async def test_participants(self, store, make_message):
        msg = make_message(sender="a1" * 32, recipients=("c3" * 32, "b2" * 32))
        await store.save_message(msg, 1)
        [conv] = await store.load_conversations()
        assert conv.participants == ["a1" * 32, "b2" * 32, "c3" * 32]

    async def test_messages_sorted_ascending(self, store, make_message):
        for ts in (3000, 1000, 2000):
            await store.save_message(make_message(content=str(ts), created_at=ts), 1)
        contents = [m.content for m in await store.load_messages(make_message().conversation_id)]
        assert contents == ["1000", "2000", "3000"]

    async def test_unknown_conversation_is_empty(self, store):
        assert await store.load_messages("nobody") == []


class TestSyncMarkers:
    async def test_wrap_ids(self, store, make_message):
        await store.save_message(make_message(content="1", wrap_id="w1"), 1)
        await store.save_message(make_message(content="2", wrap_id="w2"), 2)
        assert await store.get_wrap_ids() == {"w1", "w2"}

    async def test_since_absent_when_empty(self, store):
        assert await store.get_since_timestamp() is None

    async def test_since_is_max_wrap_minus_three_days(self, store, make_message):
        await store.save_message(make_message(content="1"), 1_700_000_000)
        await store.save_message(make_message(content="2"), 1_600_000_000)
        assert await store.get_since_timestamp() == 1_700_000_000 - THREE_DAYS

    async def test_backfill_status(self, store):
        status = await store.get_backfill_status()
        assert not status.complete and status.completed_at is None

        await store.set_backfill_complete(completed_at=5000)
        status = await store.get_backfill_status()
        assert status.complete and status.completed_at == 5000

    async def test_backfill_freshness(self, store):
        assert not await store.is_backfill_fresh(now=10_000)
        await store.set_backfill_complete(completed_at=10_000)
        assert await store.is_backfill_fresh(now=10_000 + ONE_DAY)
        assert not await store.is_backfill_fresh(now=10_000 + ONE_DAY + 1)
        assert await store.is_backfill_fresh(max_age=10, now=10_005)


class TestReadState:
    @pytest.mark.parametrize("order", [(5, 9, 7), (9, 5, 7), (7, 5, 9)])
    async def test_mark_read_is_monotonic(self, store, order):
        for ts in order:
            await store.mark_read("conv", ts)
        assert (await store.get_read_state())["conv"] == 9

    async def test_mark_read_reports_change(self, store):
        assert await store.mark_read("conv", 10) is True
        assert await store.mark_read("conv", 10) is False
        assert await store.mark_read("conv", 5) is False
        assert await store.mark_read("conv", 11) is True

    async def test_bulk_merge_takes_max(self, store):
        await store.mark_read("a", 10)
        await store.mark_read("b", 50)
        merged = await store.bulk_merge_read_state({"a": 20, "b": 40, "c": 5})
        assert merged == {"a": 20, "b": 50, "c": 5}
        assert await store.get_read_state() == merged


class TestLifecycle:
    async def test_clear_wipes_everything(self, store, make_message):
        await store.save_message(make_message(), 1000)
        await store.mark_read("x", 1)
        await store.set_backfill_complete()

        await store.clear()

        assert await store.load_conversations() == []
        assert await store.get_wrap_ids() == set()
        assert await store.get_since_timestamp() is None
        assert await store.get_read_state() == {}
        assert not (await store.get_backfill_status()).complete

    async def test_persists_across_reopen(self, tmp_path, make_message):
        msg = make_message()
        async with SQLiteMessageStore(tmp_path) as s:
            await s.save_message(msg, 1000)
        async with SQLiteMessageStore(tmp_path) as s:
            assert [m.id for m in await s.load_messages(msg.conversation_id)] == [msg.id]
            assert not await s.save_message(msg, 1000)

    async def test_not_open_raises(self, tmp_path):
        s = SQLiteMessageStore(tmp_path)
        with pytest.raises(StoreError, match="not open"):
            await s.load_conversations()

    async def test_database_location(self, tmp_path):
        s = SQLiteMessageStore(tmp_path)
        assert s.path == tmp_path / "messages" / "messages.db"

    async def test_migrates_version_one_database(self, tmp_path):
        db_path = tmp_path / "messages" / "messages.db"
        db_path.parent.mkdir(parents=True)
        async with aiosqlite.connect(str(db_path)) as db:
            await db.execute(
                "CREATE TABLE sync_meta (key TEXT PRIMARY KEY, value INTEGER NOT NULL)"
            )
            await db.execute("PRAGMA user_version = 1")
            await db.commit()

        async with SQLiteMessageStore(tmp_path) as s:
            assert await s.mark_read("conv", 1)
        async with aiosqlite.connect(str(db_path)) as db:
            async with db.execute("PRAGMA user_version") as cur:
                assert (await cur.fetchone())[0] == 2
