"""Shared timestamp utilities for coding-agent-usage-ledger."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_event_timestamp(value: Any) -> datetime | None:
    """Parse an RFC3339-style log timestamp into an aware datetime.

    Returns None for missing or unparseable values; naive timestamps are treated as UTC.
    """
    if not isinstance(value, str) or not value:
        return None
    normalized = value.replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def resolve_day_key(event_timestamp: datetime, timezone: ZoneInfo | None = None) -> date:
    """Resolve event date in the selected timezone (or local system timezone)."""
    normalized = event_timestamp if event_timestamp.tzinfo is not None else event_timestamp.replace(tzinfo=UTC)
    return normalized.astimezone(timezone).date()


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime into integer milliseconds since the Unix epoch."""
    normalized = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    return (normalized - EPOCH) // timedelta(milliseconds=1)
