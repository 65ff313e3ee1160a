"""Ledger service: pricing, inserts, summaries, and retention cleanup."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, time, timedelta
from pathlib import Path
from types import TracebackType
from zoneinfo import ZoneInfo

from model_pricing import MODEL_PRICING, ModelPricing, calculate_cost, normalize_model
from usage_ledger_internal.schemas import UsageEvent
from usage_ledger_internal.timestamps import to_epoch_ms

from .repository import LedgerRepository
from .schemas import ProviderSummary, SummaryPeriod, UsageRecordRow, UsageSummary

LOGGER = logging.getLogger(__name__)
DEFAULT_RETENTION_DAYS = 30


class LedgerService:
    """Persist priced usage events and answer summary questions about them."""

    def __init__(
        self,
        repository: LedgerRepository,
        timezone: ZoneInfo | None = None,
        pricing_table: Mapping[str, ModelPricing] | None = None,
    ) -> None:
        self._repository = repository
        self._timezone = timezone
        self._pricing_table = pricing_table if pricing_table is not None else MODEL_PRICING

    @classmethod
    def open(cls, database_path: Path, timezone: ZoneInfo | None = None) -> LedgerService:
        """Open (creating if needed) a ledger database and apply pending migrations."""
        database_path.parent.mkdir(parents=True, exist_ok=True)
        repository = LedgerRepository(database_path)
        try:
            repository.ensure_schema()
        except Exception:
            repository.close()
            raise
        LOGGER.info("Opened usage ledger at %s.", database_path)
        return cls(repository=repository, timezone=timezone)

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    def close(self) -> None:
        self._repository.close()

    def __enter__(self) -> LedgerService:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def calculate_cost(
        self,
        model: str,
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int = 0,
        cache_creation_tokens: int = 0,
    ) -> float:
        """Estimate USD cost with this ledger's pricing table."""
        return calculate_cost(
            model,
            input_tokens,
            output_tokens,
            cache_read_tokens,
            cache_creation_tokens,
            pricing_table=self._pricing_table,
        )

    def insert(
        self,
        event: UsageEvent,
        provider: str,
        source: str,
        precomputed_cost: float | None = None,
    ) -> bool:
        """Insert one event, returning False when an identical record already exists.

        The model is normalized for `provider` before pricing and storage. A precomputed cost
        (argument first, then the event's own) is stored verbatim instead of the table estimate.
        """
        return self._repository.insert_record(self._build_row(event, provider, source, precomputed_cost))

    def insert_many(self, events: Iterable[UsageEvent], provider: str, source: str) -> int:
        """Insert events in one transaction and return how many new records were stored."""
        rows = [self._build_row(event, provider, source, None) for event in events]
        inserted = self._repository.insert_records(rows)
        LOGGER.info(
            "Stored %d new %s records (%d already present).",
            inserted,
            source,
            len(rows) - inserted,
        )
        return inserted

    def get_usage_summary(self, period: SummaryPeriod, now: datetime | None = None) -> UsageSummary:
        """Group usage since the start of `period` by provider and model."""
        current = now if now is not None else datetime.now(UTC)
        window_start = resolve_period_start(period, current, self._timezone)
        model_summaries = self._repository.fetch_model_summaries(to_epoch_ms(window_start))

        providers: dict[str, ProviderSummary] = {}
        for model_summary in model_summaries:
            provider_summary = providers.get(model_summary.provider)
            if provider_summary is None:
                provider_summary = ProviderSummary(provider=model_summary.provider)
                providers[model_summary.provider] = provider_summary
            provider_summary.add(model_summary)

        today_start = resolve_period_start(SummaryPeriod.TODAY, current, self._timezone)
        month_start = resolve_period_start(SummaryPeriod.MONTH, current, self._timezone)
        return UsageSummary(
            period=period,
            window_start=window_start,
            providers=list(providers.values()),
            total_cost_today=round(self._repository.total_cost_since(to_epoch_ms(today_start)), 2),
            total_cost_this_month=round(self._repository.total_cost_since(to_epoch_ms(month_start)), 2),
        )

    def cleanup_old_data(self, retention_days: int = DEFAULT_RETENTION_DAYS, now: datetime | None = None) -> int:
        """Delete records older than the retention window and compact storage when anything went."""
        if retention_days < 0:
            raise ValueError(f"retention_days must be non-negative, got {retention_days}.")
        current = now if now is not None else datetime.now(UTC)
        cutoff = current - timedelta(days=retention_days)
        deleted = self._repository.delete_records_before(to_epoch_ms(cutoff))
        if deleted > 0:
            self._repository.checkpoint()
            LOGGER.info("Deleted %d usage records older than %d days.", deleted, retention_days)
        return deleted

    def _build_row(
        self,
        event: UsageEvent,
        provider: str,
        source: str,
        precomputed_cost: float | None,
    ) -> UsageRecordRow:
        model = normalize_model(event.model, provider)
        cost = precomputed_cost if precomputed_cost is not None else event.precomputed_cost_usd
        if cost is None:
            cost = self.calculate_cost(
                model,
                event.input_tokens,
                event.output_tokens,
                event.cache_read_tokens,
                event.cache_creation_tokens,
            )
        return UsageRecordRow(
            timestamp_ms=to_epoch_ms(event.timestamp),
            provider=str(provider),
            model=model,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            cache_read_tokens=event.cache_read_tokens,
            cache_creation_tokens=event.cache_creation_tokens,
            estimated_cost_usd=cost,
            source=source,
            session_id=event.session_id,
        )


def resolve_period_start(period: SummaryPeriod, now: datetime, timezone: ZoneInfo | None) -> datetime:
    """Return local midnight today, midnight seven days back, or the first of the month."""
    local_now = now.astimezone(timezone)
    today = local_now.date()
    if period == SummaryPeriod.TODAY:
        start_date = today
    elif period == SummaryPeriod.WEEK:
        start_date = today - timedelta(days=7)
    elif period == SummaryPeriod.MONTH:
        start_date = today.replace(day=1)
    else:
        raise ValueError(f"Unsupported summary period: {period}")
    return datetime.combine(start_date, time.min, tzinfo=local_now.tzinfo)
