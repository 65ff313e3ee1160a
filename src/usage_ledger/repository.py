"""DuckDB repository for the usage ledger."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import duckdb

from model_pricing import calculate_cost

from .errors import LedgerMigrationError, LedgerOpenError, LedgerQueryError
from .schemas import ModelSummary, UsageRecord, UsageRecordRow

LOGGER = logging.getLogger(__name__)

DEDUP_INDEX_NAME = "idx_usage_records_dedup"
SECONDARY_INDEXES = {
    "idx_usage_records_timestamp": "timestamp_ms",
    "idx_usage_records_provider_timestamp": "provider, timestamp_ms",
}
DEDUP_COLUMNS = ("timestamp_ms", "provider", "model", "source", "input_tokens", "output_tokens")
CACHE_COLUMNS = ("cache_read_tokens", "cache_creation_tokens")
# Rows written before this model's table entry was corrected carry a stale estimate.
REPRICED_MODEL = "claude-opus-4-6"
MIGRATION_DEDUPLICATE = "deduplicate_usage_records"
MIGRATION_REPRICE = "reprice_claude_opus_4_6"

_INSERT_COLUMNS = (
    "timestamp_ms",
    "provider",
    "model",
    "input_tokens",
    "output_tokens",
    "cache_read_tokens",
    "cache_creation_tokens",
    "estimated_cost_usd",
    "source",
    "session_id",
)
_INSERT_IF_ABSENT_SQL = f"""
INSERT INTO usage_records ({", ".join(_INSERT_COLUMNS)})
SELECT {", ".join(f"incoming.{column}" for column in _INSERT_COLUMNS)}
FROM (VALUES ({", ".join("?" for _ in _INSERT_COLUMNS)})) AS incoming({", ".join(_INSERT_COLUMNS)})
WHERE NOT EXISTS (
    SELECT 1
    FROM usage_records AS existing
    WHERE {" AND ".join(f"existing.{column} = incoming.{column}" for column in DEDUP_COLUMNS)}
)
"""


class LedgerRepository:
    """DuckDB-backed repository for usage records and schema migrations."""

    def __init__(self, database_path: Path) -> None:
        self._database_path = database_path
        try:
            self._connection = duckdb.connect(str(database_path))
        except duckdb.Error as exc:
            raise LedgerOpenError(f"Failed to open ledger database at {database_path}.") from exc

    def close(self) -> None:
        """Close the underlying DuckDB connection."""
        self._connection.close()

    def ensure_schema(self) -> None:
        """Create the ledger tables and bring older layouts up to date.

        Steps run in a fixed order: base tables, missing cache columns, secondary
        indexes, the one-time duplicate sweep, the uniqueness index, and the one-time
        re-pricing pass. The sweep has to precede the uniqueness index because existing
        duplicates would make the index creation fail.
        """
        try:
            self._create_tables()
            self._add_missing_cache_columns()
            for index_name, columns in SECONDARY_INDEXES.items():
                _ = self._connection.execute(f"CREATE INDEX IF NOT EXISTS {index_name} ON usage_records ({columns})")
            self._run_once(MIGRATION_DEDUPLICATE, self._deduplicate_records)
            _ = self._connection.execute(
                f"CREATE UNIQUE INDEX IF NOT EXISTS {DEDUP_INDEX_NAME} ON usage_records ({', '.join(DEDUP_COLUMNS)})"
            )
            self._run_once(MIGRATION_REPRICE, self._reprice_model_records)
        except duckdb.Error as exc:
            raise LedgerMigrationError(f"Failed to migrate ledger schema at {self._database_path}.") from exc

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Open a DB transaction scope."""
        _ = self._connection.execute("BEGIN TRANSACTION")
        try:
            yield
        except Exception:
            _ = self._connection.execute("ROLLBACK")
            raise
        else:
            _ = self._connection.execute("COMMIT")

    def insert_record(self, row: UsageRecordRow) -> bool:
        """Insert one row unless an identical deduplication tuple is already stored."""
        try:
            result = self._connection.execute(_INSERT_IF_ABSENT_SQL, _row_parameters(row)).fetchone()
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to insert usage record.") from exc
        return result is not None and int(result[0]) > 0

    def insert_records(self, rows: Iterable[UsageRecordRow]) -> int:
        """Insert rows with the same skip-if-present rule and return how many were added."""
        parameters = [_row_parameters(row) for row in rows]
        if not parameters:
            return 0
        try:
            with self.transaction():
                before = self._count_records(self._connection)
                _ = self._connection.executemany(_INSERT_IF_ABSENT_SQL, parameters)
                after = self._count_records(self._connection)
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to insert usage records.") from exc
        return after - before

    def fetch_model_summaries(self, since_ms: int) -> list[ModelSummary]:
        """Aggregate rows at or after `since_ms` by provider and model."""
        try:
            with self._connection.cursor() as cursor:
                rows = cursor.execute(
                    """
SELECT
    provider,
    model,
    COUNT(*) AS request_count,
    SUM(input_tokens) AS input_tokens,
    SUM(output_tokens) AS output_tokens,
    SUM(cache_read_tokens) AS cache_read_tokens,
    SUM(cache_creation_tokens) AS cache_creation_tokens,
    SUM(estimated_cost_usd) AS total_cost
FROM usage_records
WHERE timestamp_ms >= ?
GROUP BY provider, model
ORDER BY provider, total_cost DESC, model
                    """,
                    [since_ms],
                ).fetchall()
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to aggregate usage records.") from exc

        return [
            ModelSummary(
                provider=str(row[0]),
                model=str(row[1]),
                request_count=int(row[2]),
                input_tokens=int(row[3]),
                output_tokens=int(row[4]),
                cache_read_tokens=int(row[5]),
                cache_creation_tokens=int(row[6]),
                total_cost=float(row[7]),
            )
            for row in rows
        ]

    def total_cost_since(self, since_ms: int) -> float:
        """Sum estimated cost for rows at or after `since_ms`."""
        try:
            with self._connection.cursor() as cursor:
                row = cursor.execute(
                    "SELECT COALESCE(SUM(estimated_cost_usd), 0) FROM usage_records WHERE timestamp_ms >= ?",
                    [since_ms],
                ).fetchone()
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to sum usage costs.") from exc
        return float(row[0]) if row is not None else 0.0

    def fetch_records(self) -> list[UsageRecord]:
        """Load every stored row ordered by insertion id."""
        try:
            with self._connection.cursor() as cursor:
                rows = cursor.execute(
                    f"""
SELECT id, {", ".join(_INSERT_COLUMNS)}
FROM usage_records
ORDER BY id
                    """
                ).fetchall()
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to query usage records.") from exc

        return [
            UsageRecord(
                id=int(row[0]),
                timestamp_ms=int(row[1]),
                provider=str(row[2]),
                model=str(row[3]),
                input_tokens=int(row[4]),
                output_tokens=int(row[5]),
                cache_read_tokens=int(row[6]),
                cache_creation_tokens=int(row[7]),
                estimated_cost_usd=float(row[8]),
                source=str(row[9]),
                session_id=row[10],
            )
            for row in rows
        ]

    def count_records(self) -> int:
        """Return how many usage rows are stored."""
        try:
            with self._connection.cursor() as cursor:
                return self._count_records(cursor)
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to count usage records.") from exc

    def delete_records_before(self, cutoff_ms: int) -> int:
        """Delete rows strictly older than `cutoff_ms` and return the deleted count."""
        try:
            row = self._connection.execute(
                "DELETE FROM usage_records WHERE timestamp_ms < ?",
                [cutoff_ms],
            ).fetchone()
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to delete old usage records.") from exc
        return int(row[0]) if row is not None else 0

    def checkpoint(self) -> None:
        """Fold the write-ahead log back into the database file."""
        try:
            _ = self._connection.execute("CHECKPOINT")
        except duckdb.Error as exc:
            raise LedgerQueryError("Failed to checkpoint ledger database.") from exc

    def _create_tables(self) -> None:
        _ = self._connection.execute("CREATE SEQUENCE IF NOT EXISTS usage_records_id_seq START 1")
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS usage_records (
    id BIGINT PRIMARY KEY DEFAULT nextval('usage_records_id_seq'),
    timestamp_ms BIGINT NOT NULL,
    provider VARCHAR NOT NULL,
    model VARCHAR NOT NULL,
    input_tokens BIGINT NOT NULL,
    output_tokens BIGINT NOT NULL,
    cache_read_tokens BIGINT DEFAULT 0,
    cache_creation_tokens BIGINT DEFAULT 0,
    estimated_cost_usd DOUBLE NOT NULL,
    source VARCHAR NOT NULL,
    session_id VARCHAR
)
            """
        )
        _ = self._connection.execute(
            """
CREATE TABLE IF NOT EXISTS ledger_migrations (
    name VARCHAR PRIMARY KEY,
    applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
)
            """
        )

    def _add_missing_cache_columns(self) -> None:
        rows = self._connection.execute(
            """
SELECT column_name
FROM information_schema.columns
WHERE table_name = 'usage_records'
            """
        ).fetchall()
        existing_columns = {str(row[0]) for row in rows}
        missing_columns = [column for column in CACHE_COLUMNS if column not in existing_columns]
        if not missing_columns:
            return

        # DuckDB refuses ALTER TABLE while an index depends on the table; ensure_schema
        # recreates the indexes afterwards.
        index_rows = self._connection.execute(
            "SELECT index_name FROM duckdb_indexes() WHERE table_name = 'usage_records'"
        ).fetchall()
        for index_row in index_rows:
            _ = self._connection.execute(f'DROP INDEX IF EXISTS "{index_row[0]}"')
        for column in missing_columns:
            LOGGER.info("Adding missing column %s to usage_records.", column)
            _ = self._connection.execute(f"ALTER TABLE usage_records ADD COLUMN {column} BIGINT DEFAULT 0")

    def _run_once(self, name: str, migration: Callable[[], int]) -> None:
        applied = self._connection.execute(
            "SELECT 1 FROM ledger_migrations WHERE name = ?",
            [name],
        ).fetchone()
        if applied is not None:
            return

        with self.transaction():
            changed_rows = migration()
            _ = self._connection.execute("INSERT INTO ledger_migrations (name) VALUES (?)", [name])
        if changed_rows:
            LOGGER.info("Migration %s changed %d rows.", name, changed_rows)

    def _deduplicate_records(self) -> int:
        """Keep the lowest-id row of every duplicate group."""
        dedup_columns = ", ".join(DEDUP_COLUMNS)
        row = self._connection.execute(
            f"""
DELETE FROM usage_records
WHERE id NOT IN (
    SELECT MIN(id)
    FROM usage_records
    GROUP BY {dedup_columns}
)
            """
        ).fetchone()
        return int(row[0]) if row is not None else 0

    def _reprice_model_records(self) -> int:
        rows = self._connection.execute(
            """
SELECT id, input_tokens, output_tokens, COALESCE(cache_read_tokens, 0), COALESCE(cache_creation_tokens, 0)
FROM usage_records
WHERE model = ?
            """,
            [REPRICED_MODEL],
        ).fetchall()
        if not rows:
            return 0

        _ = self._connection.executemany(
            "UPDATE usage_records SET estimated_cost_usd = ? WHERE id = ?",
            [
                [
                    calculate_cost(REPRICED_MODEL, int(row[1]), int(row[2]), int(row[3]), int(row[4])),
                    int(row[0]),
                ]
                for row in rows
            ],
        )
        return len(rows)

    @staticmethod
    def _count_records(connection: duckdb.DuckDBPyConnection) -> int:
        row = connection.execute("SELECT COUNT(*) FROM usage_records").fetchone()
        return int(row[0]) if row is not None else 0


def _row_parameters(row: UsageRecordRow) -> list[object]:
    return [
        row.timestamp_ms,
        row.provider,
        row.model,
        row.input_tokens,
        row.output_tokens,
        row.cache_read_tokens,
        row.cache_creation_tokens,
        row.estimated_cost_usd,
        row.source,
        row.session_id,
    ]
