"""CLI entrypoints for the coding-agent usage ledger."""

from __future__ import annotations

import logging
from pathlib import Path
from zoneinfo import ZoneInfo

import typer
from rich.console import Console

from claude_token_usage.ingestion import ClaudeLogScanner
from codex_token_usage.ingestion import CodexLogScanner
from usage_ledger_internal.paths import get_default_database_path

from .driver import DEFAULT_INTERVAL_SECONDS, IngestionDriver
from .errors import LedgerError
from .render import render_usage_summary
from .schemas import IngestionCounters, SummaryPeriod
from .service import DEFAULT_RETENTION_DAYS, LedgerService

LOGGER = logging.getLogger(__name__)

TYPER_APP = typer.Typer(help="Coding-agent token usage ledger.")

DATABASE_PATH_OPTION = typer.Option(
    None,
    "--database-path",
    "-d",
    help="DuckDB ledger file. Defaults to $USAGE_LEDGER_DB_PATH or the XDG data directory.",
)
CLAUDE_ROOT_OPTION = typer.Option(
    None,
    "--claude-root",
    help="Claude Code projects directory to scan (repeatable). Defaults to $CLAUDE_CONFIG_DIR or ~/.claude.",
)
CODEX_ROOT_OPTION = typer.Option(
    None,
    "--codex-root",
    help="Codex sessions directory to scan (repeatable). Defaults to $CODEX_HOME or ~/.codex.",
)
TIMEZONE_OPTION = typer.Option(
    None,
    "--timezone",
    "-tz",
    help="Timezone for day boundaries (e.g., 'UTC', 'America/New_York'). Defaults to local system time.",
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable info-level logging.")


@TYPER_APP.callback()
def main() -> None:
    """Root CLI callback."""


def _open_ledger(database_path: Path | None, timezone: ZoneInfo | None) -> LedgerService:
    resolved_path = database_path if database_path is not None else get_default_database_path()
    try:
        return LedgerService.open(resolved_path, timezone=timezone)
    except LedgerError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _build_driver(
    ledger: LedgerService,
    claude_roots: list[Path] | None,
    codex_roots: list[Path] | None,
    timezone: ZoneInfo | None,
) -> IngestionDriver:
    return IngestionDriver(
        ledger=ledger,
        claude_scanner=ClaudeLogScanner(project_roots=claude_roots or None, timezone=timezone),
        codex_scanner=CodexLogScanner(session_roots=codex_roots or None, timezone=timezone),
    )


@TYPER_APP.command("ingest")
def ingest_command(
    database_path: Path | None = DATABASE_PATH_OPTION,
    claude_roots: list[Path] | None = CLAUDE_ROOT_OPTION,
    codex_roots: list[Path] | None = CODEX_ROOT_OPTION,
    timezone: str | None = TIMEZONE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Scan Claude Code and Codex logs once and store new usage records."""
    _configure_logging(verbose)
    resolved_timezone = _parse_timezone(timezone)
    ledger = _open_ledger(database_path, resolved_timezone)
    try:
        LOGGER.info("Start ingesting coding-agent logs.")
        counters = _build_driver(ledger, claude_roots, codex_roots, resolved_timezone).ingest()
        LOGGER.info("Finished ingesting coding-agent logs.")
    except LedgerError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        ledger.close()

    _emit_summary(counters)
    if counters.failed_files:
        raise typer.Exit(code=1)


@TYPER_APP.command("summary")
def summary_command(
    period: SummaryPeriod = typer.Option(
        SummaryPeriod.TODAY,
        "--period",
        "-p",
        help="Summary window: today, week (last 7 days), or month.",
        case_sensitive=False,
    ),
    ingest: bool = typer.Option(
        False,
        "--ingest/--no-ingest",
        help="Scan logs into the ledger before summarizing.",
    ),
    database_path: Path | None = DATABASE_PATH_OPTION,
    claude_roots: list[Path] | None = CLAUDE_ROOT_OPTION,
    codex_roots: list[Path] | None = CODEX_ROOT_OPTION,
    timezone: str | None = TIMEZONE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Print usage and costs grouped by provider and model."""
    _configure_logging(verbose)
    resolved_timezone = _parse_timezone(timezone)
    ledger = _open_ledger(database_path, resolved_timezone)
    try:
        if ingest:
            counters = _build_driver(ledger, claude_roots, codex_roots, resolved_timezone).ingest()
            if verbose:
                _emit_summary(counters)
        summary = ledger.get_usage_summary(period)
    except LedgerError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        ledger.close()

    render_usage_summary(summary, Console())


@TYPER_APP.command("cleanup")
def cleanup_command(
    retention_days: int = typer.Option(
        DEFAULT_RETENTION_DAYS,
        "--retention-days",
        min=0,
        help="Delete records older than this many days.",
    ),
    database_path: Path | None = DATABASE_PATH_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Delete usage records outside the retention window."""
    _configure_logging(verbose)
    ledger = _open_ledger(database_path, None)
    try:
        deleted = ledger.cleanup_old_data(retention_days)
    except LedgerError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        ledger.close()
    typer.echo(f"records_deleted={deleted}")


@TYPER_APP.command("watch")
def watch_command(
    interval: float = typer.Option(
        DEFAULT_INTERVAL_SECONDS,
        "--interval",
        min=1.0,
        help="Seconds between ingestion passes.",
    ),
    retention_days: int = typer.Option(
        DEFAULT_RETENTION_DAYS,
        "--retention-days",
        min=0,
        help="Skip and delete records older than this many days (cleanup runs daily).",
    ),
    database_path: Path | None = DATABASE_PATH_OPTION,
    claude_roots: list[Path] | None = CLAUDE_ROOT_OPTION,
    codex_roots: list[Path] | None = CODEX_ROOT_OPTION,
    timezone: str | None = TIMEZONE_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Keep ingesting on a timer until interrupted."""
    _configure_logging(verbose)
    resolved_timezone = _parse_timezone(timezone)
    ledger = _open_ledger(database_path, resolved_timezone)
    driver = _build_driver(ledger, claude_roots, codex_roots, resolved_timezone)
    try:
        driver.run_forever(interval_seconds=interval, retention_days=retention_days)
    except KeyboardInterrupt:
        typer.echo("Stopped.")
    except LedgerError as exc:
        raise typer.BadParameter(str(exc)) from exc
    finally:
        ledger.close()


def _configure_logging(verbose: bool) -> None:
    """Initialize default logging for CLI usage."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="[%(asctime)s][%(levelname)s][%(name)s] %(message)s",
    )


def _emit_summary(counters: IngestionCounters) -> None:
    """Print ingestion counters to stdout."""
    summary_lines = [
        f"claude_files_scanned={counters.claude_files_scanned}",
        f"claude_events_scanned={counters.claude_events_scanned}",
        f"codex_files_scanned={counters.codex_files_scanned}",
        f"codex_events_scanned={counters.codex_events_scanned}",
        f"records_inserted={counters.records_inserted}",
        f"records_skipped_duplicate={counters.records_skipped_duplicate}",
        f"records_skipped_expired={counters.records_skipped_expired}",
        f"lines_malformed={counters.lines_malformed}",
    ]
    for line in summary_lines:
        typer.echo(line)

    for failed_file in counters.failed_files:
        typer.echo(f"failed_file={failed_file}")


def _parse_timezone(timezone: str | None) -> ZoneInfo | None:
    """Parse timezone option into a ZoneInfo instance."""
    if timezone is None:
        return None
    try:
        return ZoneInfo(timezone)
    except Exception as exc:
        raise typer.BadParameter(f"Invalid timezone: {timezone}.") from exc


def module_cli_entry_point():
    TYPER_APP()
