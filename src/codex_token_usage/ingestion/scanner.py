"""Incremental scanner for Codex session logs."""

from __future__ import annotations

from functools import partial
from pathlib import Path
from zoneinfo import ZoneInfo

from usage_ledger_internal.log_scan import IncrementalLogReader
from usage_ledger_internal.paths import get_codex_session_roots
from usage_ledger_internal.schemas import FileScanState, ScanCounters, UsageEvent

from .parser import parse_codex_lines


class CodexLogScanner:
    """Scans `sessions/**/*.jsonl` and `archived_sessions/**/*.jsonl` under the Codex homes."""

    def __init__(self, session_roots: list[Path] | None = None, timezone: ZoneInfo | None = None) -> None:
        self._session_roots = session_roots
        self._reader = IncrementalLogReader(partial(parse_codex_lines, timezone=timezone))

    def scan(self) -> list[UsageEvent]:
        """Return every usage event currently derivable from the Codex session logs."""
        return self._reader.scan(self.session_roots())

    def session_roots(self) -> list[Path]:
        """Return explicit roots when configured, otherwise resolve them from the environment."""
        if self._session_roots is not None:
            return list(self._session_roots)
        return get_codex_session_roots()

    @property
    def last_counters(self) -> ScanCounters:
        """Counters from the most recent scan pass."""
        return self._reader.last_counters

    def file_state(self, log_file_path: Path | str) -> FileScanState | None:
        """Return resume state for one log file."""
        return self._reader.file_state(log_file_path)

    def clear_cache(self) -> None:
        """Force a full re-parse of every file on the next scan."""
        self._reader.clear()
