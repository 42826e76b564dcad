"""Millisecond timestamps and their ISO-8601 rendering."""

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_iso(timestamp_ms: int) -> str:
    """Render epoch milliseconds as ISO-8601 UTC, e.g. ``2024-05-01T12:00:00.000Z``."""
    moment = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def iso_to_ms(value: str) -> int:
    """Parse an ISO-8601 string (``Z`` suffix accepted) into epoch milliseconds.

    Naive timestamps are taken as UTC.

    Raises:
        ValueError: If the string is not ISO-8601
    """
    moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)
