"""Tests for the job watchdog."""

from __future__ import annotations

import asyncio

import pytest

from saleshub_automation.errors import FailureKind
from saleshub_automation.watchdog import Watchdog, describe_duration


class FakeClock:
    def __init__(self) -> None:
        self.now: float = 0.0

    def __call__(self) -> float:
        return self.now


def make_watchdog(clock: FakeClock, trips: list[tuple[FailureKind, str]]) -> Watchdog:
    return Watchdog(
        total_timeout=360,
        stall_timeout=300,
        check_interval=15,
        on_trip=lambda kind, message: trips.append((kind, message)),
        clock=clock,
    )


@pytest.mark.parametrize(
    "seconds,expected",
    [(360, "6 minutes"), (300, "5 minutes"), (60, "1 minute"), (90, "90 seconds"), (0.5, "0.5 seconds")],
)
def test_describe_duration(seconds: float, expected: str):
    assert describe_duration(seconds) == expected


class TestWatchdogCheck:
    @pytest.mark.asyncio
    async def test_stall_detected(self):
        clock, trips = FakeClock(), []
        watchdog = make_watchdog(clock, trips)
        watchdog.start()

        watchdog.observe(10)
        clock.now = 299
        assert watchdog.check() is None

        clock.now = 300
        assert watchdog.check() == ("stall", "Automation stalled: no progress for 5 minutes")
        await watchdog.stop()

    @pytest.mark.asyncio
    async def test_unchanged_progress_does_not_reset_stall(self):
        clock, trips = FakeClock(), []
        watchdog = make_watchdog(clock, trips)
        watchdog.start()

        watchdog.observe(10)
        clock.now = 200
        watchdog.observe(10)
        clock.now = 300

        trip = watchdog.check()
        assert trip is not None
        assert trip[0] == "stall"
        await watchdog.stop()

    @pytest.mark.asyncio
    async def test_total_timeout_wins_over_progress(self):
        clock, trips = FakeClock(), []
        watchdog = make_watchdog(clock, trips)
        watchdog.start()

        for second in range(0, 361, 60):
            clock.now = second
            watchdog.observe(second)

        assert watchdog.check() == ("timeout", "Automation timed out after 6 minutes")
        await watchdog.stop()


class TestWatchdogLoop:
    @pytest.mark.asyncio
    async def test_trips_exactly_once(self):
        trips: list[tuple[FailureKind, str]] = []
        watchdog = Watchdog(
            total_timeout=10,
            stall_timeout=0.05,
            check_interval=0.01,
            on_trip=lambda kind, message: trips.append((kind, message)),
        )
        watchdog.start()

        await asyncio.sleep(0.3)

        assert [kind for kind, _ in trips] == ["stall"]
        assert watchdog.tripped is True
        await watchdog.stop()

    @pytest.mark.asyncio
    async def test_stop_prevents_trip(self):
        trips: list[tuple[FailureKind, str]] = []
        watchdog = Watchdog(
            total_timeout=0.05,
            stall_timeout=0.05,
            check_interval=0.01,
            on_trip=lambda kind, message: trips.append((kind, message)),
        )
        watchdog.start()
        await watchdog.stop()

        await asyncio.sleep(0.1)

        assert trips == []
        assert watchdog.tripped is False
