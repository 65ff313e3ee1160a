"""Tests for ledger schema creation and one-time migrations."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path

import duckdb
import pytest

from model_pricing import Provider
from usage_ledger import LedgerService
from usage_ledger.repository import DEDUP_INDEX_NAME, MIGRATION_DEDUPLICATE, MIGRATION_REPRICE
from usage_ledger_internal.schemas import UsageEvent


def test_fresh_database_gets_full_schema(tmp_path: Path) -> None:
    """Opening a new file should create the table, indexes, and migration markers."""
    database_path = tmp_path / "nested" / "ledger.duckdb"

    LedgerService.open(database_path).close()

    connection = duckdb.connect(str(database_path))
    try:
        columns = {
            row[0]
            for row in connection.execute(
                "SELECT column_name FROM information_schema.columns WHERE table_name = 'usage_records'"
            ).fetchall()
        }
        indexes = {
            row[0]
            for row in connection.execute(
                "SELECT index_name FROM duckdb_indexes() WHERE table_name = 'usage_records'"
            ).fetchall()
        }
        migrations = {row[0] for row in connection.execute("SELECT name FROM ledger_migrations").fetchall()}
    finally:
        connection.close()

    assert {"cache_read_tokens", "cache_creation_tokens", "session_id"} <= columns
    assert DEDUP_INDEX_NAME in indexes
    assert migrations == {MIGRATION_DEDUPLICATE, MIGRATION_REPRICE}


def test_legacy_database_is_upgraded(tmp_path: Path) -> None:
    """Legacy files gain cache columns, lose duplicates, and get re-priced opus rows."""
    database_path = tmp_path / "ledger.duckdb"
    _create_legacy_database(
        database_path,
        [
            (1_770_000_000_000, "openai", "gpt-5", 100, 10, 0.5, "codex"),
            (1_770_000_000_000, "openai", "gpt-5", 100, 10, 0.7, "codex"),
            (1_770_000_000_000, "openai", "gpt-5", 100, 10, 0.9, "codex"),
            (1_770_000_100_000, "anthropic", "claude-opus-4-6", 1_000, 1_000, 99.0, "claude-code"),
        ],
    )

    with LedgerService.open(database_path) as ledger:
        records = ledger.repository.fetch_records()
        duplicate = UsageEvent(
            day_key=datetime(2026, 2, 2, tzinfo=UTC).date(),
            model="gpt-5",
            input_tokens=100,
            output_tokens=10,
            cache_read_tokens=0,
            cache_creation_tokens=0,
            timestamp=datetime.fromtimestamp(1_770_000_000, tz=UTC),
        )
        assert ledger.insert(duplicate, Provider.OPENAI, "codex") is False

    assert [record.id for record in records] == [1, 4]
    assert records[0].estimated_cost_usd == pytest.approx(0.5)
    assert records[0].cache_read_tokens == 0
    assert records[0].cache_creation_tokens == 0
    assert records[1].estimated_cost_usd == pytest.approx(0.03)


def test_one_time_migrations_do_not_rerun(tmp_path: Path) -> None:
    """Re-opening must leave rows alone once the migrations are recorded."""
    database_path = tmp_path / "ledger.duckdb"
    _create_legacy_database(
        database_path,
        [(1_770_000_100_000, "anthropic", "claude-opus-4-6", 1_000, 1_000, 99.0, "claude-code")],
    )
    LedgerService.open(database_path).close()

    connection = duckdb.connect(str(database_path))
    try:
        connection.execute("UPDATE usage_records SET estimated_cost_usd = 1.5")
    finally:
        connection.close()

    with LedgerService.open(database_path) as ledger:
        records = ledger.repository.fetch_records()

    assert records[0].estimated_cost_usd == pytest.approx(1.5)


def test_new_rows_continue_legacy_ids(tmp_path: Path) -> None:
    """Inserted rows should take ids after the legacy rows."""
    database_path = tmp_path / "ledger.duckdb"
    _create_legacy_database(
        database_path,
        [(1_770_000_000_000, "openai", "gpt-5", 100, 10, 0.5, "codex")],
    )
    event = UsageEvent(
        day_key=datetime(2026, 2, 2, tzinfo=UTC).date(),
        model="gpt-5",
        input_tokens=200,
        output_tokens=20,
        cache_read_tokens=50,
        cache_creation_tokens=0,
        timestamp=datetime(2026, 2, 2, 12, 0, tzinfo=UTC),
    )

    with LedgerService.open(database_path) as ledger:
        assert ledger.insert(event, Provider.OPENAI, "codex") is True
        records = ledger.repository.fetch_records()

    assert [record.id for record in records] == [1, 2]
    assert records[1].cache_read_tokens == 50


def _create_legacy_database(
    database_path: Path,
    rows: list[tuple[int, str, str, int, int, float, str]],
) -> None:
    """Write a ledger file in the layout used before cache columns and dedup index existed."""
    connection = duckdb.connect(str(database_path))
    try:
        connection.execute("CREATE SEQUENCE usage_records_id_seq START 1")
        connection.execute(
            """
            CREATE TABLE usage_records (
                id BIGINT DEFAULT nextval('usage_records_id_seq'),
                timestamp_ms BIGINT NOT NULL,
                provider VARCHAR NOT NULL,
                model VARCHAR NOT NULL,
                input_tokens BIGINT NOT NULL,
                output_tokens BIGINT NOT NULL,
                estimated_cost_usd DOUBLE NOT NULL,
                source VARCHAR NOT NULL,
                session_id VARCHAR
            )
            """
        )
        connection.execute("CREATE INDEX idx_usage_records_timestamp ON usage_records (timestamp_ms)")
        connection.executemany(
            """
            INSERT INTO usage_records (timestamp_ms, provider, model, input_tokens, output_tokens, estimated_cost_usd, source)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [list(row) for row in rows],
        )
    finally:
        connection.close()
