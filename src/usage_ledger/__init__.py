"""DuckDB-backed usage ledger for coding-agent token usage."""

from .driver import IngestionDriver
from .errors import LedgerError, LedgerMigrationError, LedgerOpenError, LedgerQueryError
from .schemas import IngestionCounters, SummaryPeriod, UsageSummary
from .service import LedgerService

__all__ = [
    "IngestionCounters",
    "IngestionDriver",
    "LedgerError",
    "LedgerMigrationError",
    "LedgerOpenError",
    "LedgerQueryError",
    "LedgerService",
    "SummaryPeriod",
    "UsageSummary",
]
