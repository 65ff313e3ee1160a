"""Ingestion driver that feeds scanner output into the usage ledger."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from claude_token_usage.ingestion import ClaudeLogScanner
from codex_token_usage.ingestion import CodexLogScanner
from model_pricing import Provider
from usage_ledger_internal.schemas import UsageEvent

from .schemas import IngestionCounters
from .service import DEFAULT_RETENTION_DAYS, LedgerService

LOGGER = logging.getLogger(__name__)
CLAUDE_SOURCE = "claude-code"
CODEX_SOURCE = "codex"
DEFAULT_INTERVAL_SECONDS = 60.0
DEFAULT_CLEANUP_INTERVAL_SECONDS = 24 * 60 * 60.0


class IngestionDriver:
    """Scan both log sources and insert every event into the ledger."""

    def __init__(
        self,
        ledger: LedgerService,
        claude_scanner: ClaudeLogScanner | None = None,
        codex_scanner: CodexLogScanner | None = None,
    ) -> None:
        self._ledger = ledger
        self._claude_scanner = claude_scanner if claude_scanner is not None else ClaudeLogScanner()
        self._codex_scanner = codex_scanner if codex_scanner is not None else CodexLogScanner()

    def ingest(self, retention_days: int | None = None, now: datetime | None = None) -> IngestionCounters:
        """Run one scan of each source and insert the results, one transaction per source.

        With `retention_days` set, events older than the retention window are not inserted, so a
        later cleanup never has to delete them again.
        """
        counters = IngestionCounters()
        cutoff = None
        if retention_days is not None:
            current = now if now is not None else datetime.now(UTC)
            cutoff = current - timedelta(days=retention_days)

        claude_events = self._claude_scanner.scan()
        claude_scan = self._claude_scanner.last_counters
        counters.claude_files_scanned = claude_scan.files_scanned
        counters.claude_events_scanned = len(claude_events)
        counters.lines_malformed += claude_scan.lines_malformed
        counters.failed_files.extend(claude_scan.failed_files)
        claude_retained = _within_retention(claude_events, cutoff)
        claude_inserted = self._ledger.insert_many(claude_retained, Provider.ANTHROPIC, CLAUDE_SOURCE)

        codex_events = self._codex_scanner.scan()
        codex_scan = self._codex_scanner.last_counters
        counters.codex_files_scanned = codex_scan.files_scanned
        counters.codex_events_scanned = len(codex_events)
        counters.lines_malformed += codex_scan.lines_malformed
        counters.failed_files.extend(codex_scan.failed_files)
        codex_retained = _within_retention(codex_events, cutoff)
        codex_inserted = self._ledger.insert_many(codex_retained, Provider.OPENAI, CODEX_SOURCE)

        counters.records_inserted = claude_inserted + codex_inserted
        counters.records_skipped_expired = (
            counters.claude_events_scanned + counters.codex_events_scanned - len(claude_retained) - len(codex_retained)
        )
        counters.records_skipped_duplicate = len(claude_retained) + len(codex_retained) - counters.records_inserted
        LOGGER.info(
            "Ingestion pass stored %d new records from %d Claude and %d Codex events.",
            counters.records_inserted,
            counters.claude_events_scanned,
            counters.codex_events_scanned,
        )
        return counters

    def run_forever(
        self,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        retention_days: int | None = DEFAULT_RETENTION_DAYS,
        cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        max_ticks: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Ingest on a fixed timer and prune old records on a slower one.

        Events outside the retention window are never inserted. Cleanup runs on the first tick and
        then once `cleanup_interval_seconds` have passed. `max_ticks` bounds the loop for callers
        that cannot interrupt it.
        """
        ticks = 0
        last_cleanup: float | None = None
        while max_ticks is None or ticks < max_ticks:
            counters = self.ingest(retention_days=retention_days)
            if retention_days is not None:
                tick_started = clock()
                if last_cleanup is None or tick_started - last_cleanup >= cleanup_interval_seconds:
                    counters.records_deleted = self._ledger.cleanup_old_data(retention_days)
                    last_cleanup = tick_started
            if counters.failed_files:
                LOGGER.warning("Failed to read %d log files this pass.", len(counters.failed_files))
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            sleep(interval_seconds)


def _within_retention(events: list[UsageEvent], cutoff: datetime | None) -> list[UsageEvent]:
    if cutoff is None:
        return events
    return [event for event in events if event.timestamp >= cutoff]
