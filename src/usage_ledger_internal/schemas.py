"""Typed schemas shared by the log scanners."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass(frozen=True)
class UsageEvent:
    """One normalized usage event extracted from a source log line."""

    day_key: date
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    timestamp: datetime
    precomputed_cost_usd: float | None = None
    session_id: str | None = None

    @property
    def has_usage(self) -> bool:
        """Return True when at least one token counter is non-zero."""
        return any(
            (
                self.input_tokens,
                self.output_tokens,
                self.cache_read_tokens,
                self.cache_creation_tokens,
            )
        )


@dataclass(frozen=True)
class FileScanState:
    """Resume state for one observed log file."""

    path: str
    size_at_last_scan: int
    mtime_at_last_scan: int
    byte_offset_consumed: int
    carried_state: Any
    extracted_events: tuple[UsageEvent, ...]


@dataclass(frozen=True)
class ParsedLines:
    """Parser output for one batch of freshly read lines."""

    events: list[UsageEvent]
    carried_state: Any
    lines_read: int
    lines_malformed: int


@dataclass
class ScanCounters:
    """Counters emitted by one scan pass."""

    roots_scanned: int = 0
    files_scanned: int = 0
    files_skipped_unchanged: int = 0
    files_read_incrementally: int = 0
    files_reparsed: int = 0
    files_failed: int = 0
    files_dropped: int = 0
    lines_read: int = 0
    lines_malformed: int = 0
    events_emitted: int = 0
    failed_files: list[str] = field(default_factory=list)
