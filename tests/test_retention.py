"""Tests for the retention sweeps."""

import asyncio
from datetime import timedelta

import pytest

from ledger_notify.services.retention import RetentionEngine


class TestAgePurges:
    """Old and read purges."""

    @pytest.mark.asyncio
    async def test_purge_old_ignores_read_state(self, store, retention):
        """Rows older than 7 days go, read or not; 6-day-old rows stay."""
        stale_unread = store.seed("u1", age=timedelta(days=8))
        stale_read = store.seed("u1", age=timedelta(days=8), read=True)
        recent = store.seed("u1", age=timedelta(days=6))

        removed = await retention.purge_old()

        assert removed == 2
        assert stale_unread.id not in store.rows
        assert stale_read.id not in store.rows
        assert recent.id in store.rows

    @pytest.mark.asyncio
    async def test_purge_read_uses_three_day_horizon(self, store, retention):
        """Read rows older than 3 days go; younger read rows and old unread rows stay."""
        old_read = store.seed("u1", age=timedelta(days=4), read=True)
        young_read = store.seed("u1", age=timedelta(days=2), read=True)
        old_unread = store.seed("u1", age=timedelta(days=4))

        removed = await retention.purge_read()

        assert removed == 1
        assert old_read.id not in store.rows
        assert young_read.id in store.rows
        assert old_unread.id in store.rows

    @pytest.mark.asyncio
    async def test_store_failure_is_logged_not_raised(self, store, retention, caplog):
        store.fail = True
        assert await retention.purge_old() == 0
        assert await retention.purge_read() == 0
        assert "error cleaning up" in caplog.text


class TestPerUserCap:
    """limit_user / limit_all_users."""

    @pytest.mark.asyncio
    async def test_keeps_most_recent_rows(self, store, retention):
        rows = [store.seed("u1", age=timedelta(minutes=i)) for i in range(8)]
        other = store.seed("u2", age=timedelta(days=1))

        removed = await retention.limit_user("u1", 5)

        assert removed == 3
        # rows[0] is the newest
        assert store.ids_for("u1") == {n.id for n in rows[:5]}
        assert other.id in store.rows

    @pytest.mark.asyncio
    async def test_noop_when_under_limit(self, store, retention):
        for i in range(3):
            store.seed("u1", age=timedelta(minutes=i))
        assert await retention.limit_user("u1", 3) == 0
        assert len(store.ids_for("u1")) == 3

    @pytest.mark.asyncio
    async def test_cap_is_idempotent(self, store, retention):
        for i in range(10):
            store.seed("u1", age=timedelta(minutes=i))

        await retention.limit_user("u1", 4)
        kept = store.ids_for("u1")
        assert await retention.limit_user("u1", 4) == 0
        assert store.ids_for("u1") == kept

    @pytest.mark.asyncio
    async def test_user_without_notifications(self, retention):
        assert await retention.limit_user("nobody", 50) == 0

    @pytest.mark.asyncio
    async def test_limit_all_users(self, store):
        engine = RetentionEngine(store, global_limit=2, concurrency=1)
        for user in ("a", "b", "c"):
            for i in range(4):
                store.seed(user, age=timedelta(minutes=i))
        store.seed("d")

        removed = await engine.limit_all_users()

        assert removed == 6
        for user in ("a", "b", "c"):
            assert len(store.ids_for(user)) == 2
        assert len(store.ids_for("d")) == 1


class TestFullCleanup:

    @pytest.mark.asyncio
    async def test_runs_all_sweeps_and_records_time(self, store):
        engine = RetentionEngine(store, global_limit=3)
        store.seed("u1", age=timedelta(days=9))
        store.seed("u1", age=timedelta(days=5), read=True)
        for i in range(5):
            store.seed("u2", age=timedelta(hours=i))

        summary = await engine.full_cleanup()

        assert summary == {"old": 1, "read": 1, "overLimit": 2}
        assert store.ids_for("u1") == set()
        assert len(store.ids_for("u2")) == 3
        assert engine.last_full_cleanup is not None


class TestDelayedDelete:

    @pytest.mark.asyncio
    async def test_deletes_row_still_read(self, store, retention):
        n = store.seed("u1", read=True)
        task = retention.schedule_read_delete("u1", n.id)
        assert await task == 1
        assert n.id not in store.rows

    @pytest.mark.asyncio
    async def test_keeps_row_marked_unread_again(self, store, retention):
        n = store.seed("u1", read=True)
        task = retention.schedule_read_delete("u1", n.id)
        store.rows[n.id] = n.model_copy(update={"read": False})
        assert await task == 0
        assert n.id in store.rows

    @pytest.mark.asyncio
    async def test_missing_row_is_silent(self, store, retention):
        n = store.seed("u1", read=True)
        task = retention.schedule_read_delete("u1", n.id)
        del store.rows[n.id]
        assert await task == 0

    @pytest.mark.asyncio
    async def test_shutdown_cancels_pending(self, store):
        engine = RetentionEngine(store, read_delete_delay=60)
        n = store.seed("u1", read=True)
        task = engine.schedule_read_delete("u1", n.id)
        assert engine.pending_deletes == 1

        await engine.shutdown()

        assert task.cancelled()
        assert n.id in store.rows
        await asyncio.sleep(0)
        assert engine.pending_deletes == 0


class TestStats:

    @pytest.mark.asyncio
    async def test_counts_and_percentage(self, store, retention):
        for _ in range(3):
            store.seed("u1", read=True)
        for _ in range(5):
            store.seed("u2")

        stats = await retention.stats()

        assert (stats.total, stats.read, stats.unread) == (8, 3, 5)
        # 37.5 rounds half-up
        assert stats.read_percentage == 38

    @pytest.mark.asyncio
    async def test_empty_table(self, retention):
        stats = await retention.stats()
        assert stats.total == 0
        assert stats.read_percentage == 0

    @pytest.mark.asyncio
    async def test_failure_returns_zeros(self, store, retention):
        store.seed("u1")
        store.fail = True
        stats = await retention.stats()
        assert stats.total == 0
