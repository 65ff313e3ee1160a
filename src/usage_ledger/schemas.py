"""Typed schemas used by the usage ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum


class SummaryPeriod(StrEnum):
    """Time windows supported by usage summaries."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"


@dataclass(frozen=True)
class UsageRecordRow:
    """One priced usage row ready to be written to `usage_records`."""

    timestamp_ms: int
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    estimated_cost_usd: float
    source: str
    session_id: str | None = None


@dataclass(frozen=True)
class UsageRecord:
    """One persisted row loaded from `usage_records`."""

    id: int
    timestamp_ms: int
    provider: str
    model: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    estimated_cost_usd: float
    source: str
    session_id: str | None


@dataclass(frozen=True)
class ModelSummary:
    """Aggregated usage for one provider/model pair within a summary window."""

    provider: str
    model: str
    request_count: int
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_creation_tokens: int
    total_cost: float

    @property
    def total_tokens(self) -> int:
        """Return the sum of all token categories."""
        return self.input_tokens + self.output_tokens + self.cache_read_tokens + self.cache_creation_tokens


@dataclass
class ProviderSummary:
    """Accumulates model summaries for one provider."""

    provider: str
    request_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    total_cost: float = 0.0
    models: list[ModelSummary] = field(default_factory=list)

    def add(self, model_summary: ModelSummary) -> None:
        """Add one model breakdown to this provider's totals."""
        self.models.append(model_summary)
        self.request_count += model_summary.request_count
        self.input_tokens += model_summary.input_tokens
        self.output_tokens += model_summary.output_tokens
        self.cache_read_tokens += model_summary.cache_read_tokens
        self.cache_creation_tokens += model_summary.cache_creation_tokens
        self.total_cost += model_summary.total_cost


@dataclass(frozen=True)
class UsageSummary:
    """Usage grouped by provider and model, plus the always-reported headline costs."""

    period: SummaryPeriod
    window_start: datetime
    providers: list[ProviderSummary]
    total_cost_today: float
    total_cost_this_month: float

    @property
    def request_count(self) -> int:
        """Return the number of requests in the window."""
        return sum(provider.request_count for provider in self.providers)

    @property
    def total_cost(self) -> float:
        """Return the cost of all requests in the window."""
        return sum(provider.total_cost for provider in self.providers)


@dataclass
class IngestionCounters:
    """Counters emitted by one ingestion pass."""

    claude_files_scanned: int = 0
    claude_events_scanned: int = 0
    codex_files_scanned: int = 0
    codex_events_scanned: int = 0
    records_inserted: int = 0
    records_skipped_duplicate: int = 0
    records_skipped_expired: int = 0
    lines_malformed: int = 0
    records_deleted: int = 0
    failed_files: list[str] = field(default_factory=list)
