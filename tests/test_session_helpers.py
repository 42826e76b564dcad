"""Tests for the client-side helpers: active processes, queue display and idle tracking."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest

from saleshub_automation.active_processes import ActiveProcessRegistry
from saleshub_automation.idle import IdleTracker
from saleshub_automation.local_store import ACTIVE_PROCESSES_KEY, LAST_ACTIVITY_KEY, LocalStateStore
from saleshub_automation.queue_display import merge_queue
from saleshub_automation.schemas import ActiveProcess, QueueEntryModel
from saleshub_automation.timeutils import iso_to_ms, ms_to_iso

NOW = 1_700_000_000_000


def server_entry(user_id: str, process_type: str, age_seconds: float) -> QueueEntryModel:
    return QueueEntryModel(
        id=user_id,
        user_id=user_id,
        user_name=user_id.title(),
        process_type=process_type,
        joined_at=ms_to_iso(NOW - int(age_seconds * 1000)),
        status="Waiting",
    )


def local_process(process_type: str, age_seconds: float) -> ActiveProcess:
    return ActiveProcess(
        id=f"local-{process_type}",
        process_type=process_type,
        user_name="Me",
        user_id="user_me",
        started_at=ms_to_iso(NOW - int(age_seconds * 1000)),
    )


# ============================================================================
# Time helpers
# ============================================================================


class TestTimeutils:
    def test_iso_round_trip(self):
        assert ms_to_iso(NOW) == "2023-11-14T22:13:20.000Z"
        assert iso_to_ms(ms_to_iso(NOW + 123)) == NOW + 123

    def test_naive_timestamp_is_utc(self):
        assert iso_to_ms("2023-11-14T22:13:20") == NOW

    def test_invalid_timestamp(self):
        with pytest.raises(ValueError):
            _ = iso_to_ms("yesterday")


# ============================================================================
# ActiveProcessRegistry
# ============================================================================


class TestActiveProcessRegistry:
    @pytest.mark.asyncio
    async def test_add_and_list(self, local_store: LocalStateStore):
        registry = ActiveProcessRegistry(local_store)

        process = await registry.add("ROM Generator", "Alice", "user_alice")

        listed = await registry.list_processes()
        assert listed == [process]
        assert process.started_at.endswith("Z")

    @pytest.mark.asyncio
    async def test_add_replaces_same_type(self, local_store: LocalStateStore):
        registry = ActiveProcessRegistry(local_store)
        _ = await registry.add("ROM Generator", "Alice", "user_alice")
        _ = await registry.add("Coverage Plot", "Alice", "user_alice")

        newer = await registry.add("ROM Generator", "Alice", "user_alice")

        listed = await registry.list_processes()
        assert [p.process_type for p in listed] == ["Coverage Plot", "ROM Generator"]
        assert listed[1].id == newer.id

    @pytest.mark.asyncio
    async def test_concurrent_updates_keep_every_process(self, local_store: LocalStateStore):
        registry = ActiveProcessRegistry(local_store)
        _ = await registry.add("Coverage Plot", "Alice", "user_alice")

        _ = await asyncio.gather(
            registry.remove("Coverage Plot"),
            registry.add("ROM Generator", "Alice", "user_alice"),
            registry.add("Coverage Plot", "Alice", "user_alice"),
        )

        listed = await registry.list_processes()
        assert sorted(p.process_type for p in listed) == ["Coverage Plot", "ROM Generator"]

    @pytest.mark.asyncio
    async def test_concurrent_adds(self, local_store: LocalStateStore):
        registry = ActiveProcessRegistry(local_store)

        _ = await asyncio.gather(
            registry.add("Coverage Plot", "Alice", "user_alice"),
            registry.add("ROM Generator", "Alice", "user_alice"),
        )

        listed = await registry.list_processes()
        assert sorted(p.process_type for p in listed) == ["Coverage Plot", "ROM Generator"]

    @pytest.mark.asyncio
    async def test_remove_and_clear(self, local_store: LocalStateStore):
        registry = ActiveProcessRegistry(local_store)
        _ = await registry.add("ROM Generator", "Alice", "user_alice")
        _ = await registry.add("Coverage Plot", "Alice", "user_alice")

        await registry.remove("ROM Generator")
        assert [p.process_type for p in await registry.list_processes()] == ["Coverage Plot"]

        await registry.clear()
        assert await registry.list_processes() == []

    @pytest.mark.asyncio
    async def test_unreadable_entries_dropped(self, local_store: LocalStateStore):
        _ = await local_store.set_item(
            ACTIVE_PROCESSES_KEY,
            [
                {"processType": "ROM Generator"},
                local_process("Coverage Plot", 5).to_json_dict(),
            ],
        )

        listed = await ActiveProcessRegistry(local_store).list_processes()

        assert [p.process_type for p in listed] == ["Coverage Plot"]

    @pytest.mark.asyncio
    async def test_non_list_value(self, local_store: LocalStateStore):
        _ = await local_store.set_item(ACTIVE_PROCESSES_KEY, "garbage")

        assert await ActiveProcessRegistry(local_store).list_processes() == []


# ============================================================================
# merge_queue
# ============================================================================


class TestMergeQueue:
    def test_local_processes_first(self):
        merged = merge_queue(
            [server_entry("bob", "Coverage Plot", 30)],
            [local_process("ROM Generator", 10)],
            now=NOW,
            max_age_seconds=360,
        )

        assert [(e.user_id, e.status, e.is_local) for e in merged] == [
            ("user_me", "Processing", True),
            ("bob", "Waiting", False),
        ]

    def test_same_type_server_entry_suppressed(self):
        merged = merge_queue(
            [server_entry("me_on_server", "ROM Generator", 20), server_entry("bob", "Coverage Plot", 10)],
            [local_process("ROM Generator", 20)],
            now=NOW,
            max_age_seconds=360,
        )

        assert [e.user_id for e in merged] == ["user_me", "bob"]

    def test_stale_entries_dropped(self):
        merged = merge_queue(
            [server_entry("old", "Coverage Plot", 400), server_entry("fresh", "Coverage Plot", 100)],
            [local_process("ROM Generator", 361)],
            now=NOW,
            max_age_seconds=360,
        )

        assert [e.user_id for e in merged] == ["fresh"]

    def test_stale_local_process_does_not_hide_server_entries(self):
        merged = merge_queue(
            [server_entry("bob", "ROM Generator", 30)],
            [local_process("ROM Generator", 400)],
            now=NOW,
            max_age_seconds=360,
        )

        assert [(e.user_id, e.is_local) for e in merged] == [("bob", False)]

    def test_unparseable_timestamp_dropped(self):
        entry = server_entry("bob", "Coverage Plot", 10).model_copy(update={"joined_at": "not a date"})

        assert merge_queue([entry], [], now=NOW, max_age_seconds=360) == []

    def test_server_order_preserved(self):
        queue = [server_entry(u, "Coverage Plot", age) for u, age in (("a", 30), ("b", 20), ("c", 10))]

        merged = merge_queue(queue, [], now=NOW, max_age_seconds=360)

        assert [e.user_id for e in merged] == ["a", "b", "c"]


# ============================================================================
# IdleTracker
# ============================================================================


class TestIdleTracker:
    @pytest.mark.asyncio
    async def test_start_records_activity(self, local_store: LocalStateStore):
        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            expired = await IdleTracker(local_store, timeout_seconds=900).start()

        assert expired is False
        assert await local_store.get_item(LAST_ACTIVITY_KEY) == str(NOW)

    @pytest.mark.asyncio
    async def test_expiry_reported_once(self, local_store: LocalStateStore):
        tracker = IdleTracker(local_store, timeout_seconds=900)
        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            _ = await tracker.start()

        with patch("saleshub_automation.idle.now_ms", return_value=NOW + 900_000):
            assert await tracker.check_expired() is True
            assert await tracker.check_expired() is False

        assert await local_store.get_item(LAST_ACTIVITY_KEY) is None

    @pytest.mark.asyncio
    async def test_stale_session_expired_on_start(self, local_store: LocalStateStore):
        _ = await local_store.set_item(LAST_ACTIVITY_KEY, str(NOW - 1_000_000))

        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            assert await IdleTracker(local_store, timeout_seconds=900).start() is True

    @pytest.mark.asyncio
    async def test_activity_is_throttled(self, local_store: LocalStateStore):
        tracker = IdleTracker(local_store, timeout_seconds=900, throttle_seconds=10)
        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            _ = await tracker.start()
        with patch("saleshub_automation.idle.now_ms", return_value=NOW + 5_000):
            await tracker.record_activity()
        assert await local_store.get_item(LAST_ACTIVITY_KEY) == str(NOW)

        with patch("saleshub_automation.idle.now_ms", return_value=NOW + 10_000):
            await tracker.record_activity()
        assert await local_store.get_item(LAST_ACTIVITY_KEY) == str(NOW + 10_000)

    @pytest.mark.asyncio
    async def test_activity_keeps_session_alive(self, local_store: LocalStateStore):
        tracker = IdleTracker(local_store, timeout_seconds=900, throttle_seconds=0)
        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            _ = await tracker.start()
        with patch("saleshub_automation.idle.now_ms", return_value=NOW + 600_000):
            await tracker.record_activity()
        with patch("saleshub_automation.idle.now_ms", return_value=NOW + 1_200_000):
            assert await tracker.check_expired() is False

    @pytest.mark.asyncio
    async def test_reset_after_expiry(self, local_store: LocalStateStore):
        tracker = IdleTracker(local_store, timeout_seconds=900)
        _ = await local_store.set_item(LAST_ACTIVITY_KEY, str(NOW - 1_000_000))
        with patch("saleshub_automation.idle.now_ms", return_value=NOW):
            assert await tracker.check_expired() is True
            await tracker.record_activity()
            assert await local_store.get_item(LAST_ACTIVITY_KEY) is None

            tracker.reset()
            await tracker.record_activity()

        assert await local_store.get_item(LAST_ACTIVITY_KEY) == str(NOW)
