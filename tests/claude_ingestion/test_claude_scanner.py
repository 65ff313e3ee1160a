"""Tests for the incremental Claude Code log scanner."""

from __future__ import annotations

import os
from datetime import date
from pathlib import Path
from zoneinfo import ZoneInfo

import orjson
import pytest

from claude_token_usage.ingestion import ClaudeLogScanner
from claude_token_usage.ingestion.parser import parse_claude_lines


def test_scan_extracts_assistant_usage(tmp_path: Path) -> None:
    """Assistant messages with usage should become events carrying cost and session id."""
    log_file = tmp_path / "project-a" / "session.jsonl"
    _write_jsonl(
        log_file,
        [
            {"type": "user", "timestamp": "2026-02-15T00:00:00Z", "message": {"role": "user"}},
            _assistant_line(
                "2026-02-15T00:00:01Z",
                message_id="msg_1",
                request_id="req_1",
                input_tokens=100,
                output_tokens=20,
                cache_read=300,
                cache_creation=40,
                cost=0.0125,
            ),
        ],
    )

    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    events = scanner.scan()

    assert len(events) == 1
    event = events[0]
    assert event.model == "claude-sonnet-4-5-20250929"
    assert (event.input_tokens, event.output_tokens) == (100, 20)
    assert (event.cache_read_tokens, event.cache_creation_tokens) == (300, 40)
    assert event.precomputed_cost_usd == pytest.approx(0.0125)
    assert event.session_id == "session-1"
    assert event.day_key == date(2026, 2, 15)


def test_scan_keeps_first_of_duplicate_message_lines(tmp_path: Path) -> None:
    """Streaming duplicates of one (message id, request id) pair should yield the first line only."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(
        log_file,
        [
            _assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1", input_tokens=10),
            _assistant_line("2026-02-15T00:00:02Z", message_id="msg_1", request_id="req_1", input_tokens=20),
            _assistant_line("2026-02-15T00:00:03Z", message_id="msg_1", request_id="req_1", input_tokens=30),
            _assistant_line("2026-02-15T00:00:04Z", message_id="msg_1", request_id="req_2", input_tokens=40),
        ],
    )

    events = ClaudeLogScanner(project_roots=[tmp_path]).scan()

    assert [event.input_tokens for event in events] == [10, 40]


def test_scan_skips_synthetic_zero_and_malformed_lines(tmp_path: Path) -> None:
    """Synthetic models and zero usage are skipped; broken JSON is counted as malformed."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(
        log_file,
        [
            _assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1", model="<synthetic>"),
            _assistant_line("2026-02-15T00:00:02Z", message_id="msg_2", request_id="req_2", input_tokens=0),
            _assistant_line("2026-02-15T00:00:03Z", message_id="msg_3", request_id="req_3", input_tokens=7),
        ],
    )
    with log_file.open("ab") as handle:
        handle.write(b'{"type":"assistant","message":{"usage": broken\n')

    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    events = scanner.scan()

    assert [event.input_tokens for event in events] == [7]
    assert scanner.last_counters.lines_malformed == 1
    assert scanner.last_counters.lines_read == 4


def test_unchanged_file_is_served_from_cache(tmp_path: Path) -> None:
    """A second pass over unchanged files should read no lines and return the same events."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(log_file, [_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1")])
    scanner = ClaudeLogScanner(project_roots=[tmp_path])

    first = scanner.scan()
    second = scanner.scan()

    assert second == first
    assert scanner.last_counters.lines_read == 0
    assert scanner.last_counters.files_skipped_unchanged == 1


def test_incremental_scan_matches_full_scan(tmp_path: Path) -> None:
    """Appending then rescanning should match a fresh scan of the final file."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(
        log_file,
        [
            _assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1", input_tokens=1),
            _assistant_line("2026-02-15T00:00:02Z", message_id="msg_2", request_id="req_2", input_tokens=2),
        ],
    )
    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    scanner.scan()

    _append_jsonl(
        log_file,
        [_assistant_line("2026-02-15T00:00:03Z", message_id="msg_3", request_id="req_3", input_tokens=3)],
    )
    incremental = scanner.scan()

    assert scanner.last_counters.files_read_incrementally == 1
    assert incremental == ClaudeLogScanner(project_roots=[tmp_path]).scan()
    assert [event.input_tokens for event in incremental] == [1, 2, 3]


def test_partial_trailing_line_is_read_once_complete(tmp_path: Path) -> None:
    """A half-written last line should be picked up on the pass after it is finished."""
    log_file = tmp_path / "session.jsonl"
    line = orjson.dumps(_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1"))
    log_file.write_bytes(line[:25])
    scanner = ClaudeLogScanner(project_roots=[tmp_path])

    assert scanner.scan() == []

    log_file.write_bytes(line + b"\n")
    events = scanner.scan()

    assert len(events) == 1


def test_truncated_file_is_reparsed(tmp_path: Path) -> None:
    """A file that shrinks should be parsed again from the start."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(
        log_file,
        [
            _assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1", input_tokens=1),
            _assistant_line("2026-02-15T00:00:02Z", message_id="msg_2", request_id="req_2", input_tokens=2),
        ],
    )
    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    scanner.scan()

    _write_jsonl(
        log_file,
        [_assistant_line("2026-02-15T00:00:05Z", message_id="msg_9", request_id="req_9", input_tokens=9)],
    )
    events = scanner.scan()

    assert [event.input_tokens for event in events] == [9]
    assert scanner.last_counters.files_reparsed == 1


def test_deleted_file_is_dropped(tmp_path: Path) -> None:
    """A vanished file should contribute nothing and lose its resume state."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(log_file, [_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1")])
    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    scanner.scan()

    log_file.unlink()

    assert scanner.scan() == []
    assert scanner.file_state(log_file) is None
    assert scanner.last_counters.files_dropped == 1


def test_mtime_change_without_growth_triggers_reparse(tmp_path: Path) -> None:
    """A rewrite of identical size should not be served from the cache."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(log_file, [_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1")])
    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    scanner.scan()

    stat_result = log_file.stat()
    os.utime(log_file, ns=(stat_result.st_atime_ns, stat_result.st_mtime_ns + 5_000_000_000))
    events = scanner.scan()

    assert len(events) == 1
    assert scanner.last_counters.files_reparsed == 1


def test_clear_cache_forces_full_reparse(tmp_path: Path) -> None:
    """Clearing resume state should re-read unchanged files from the start."""
    log_file = tmp_path / "session.jsonl"
    _write_jsonl(log_file, [_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1")])
    scanner = ClaudeLogScanner(project_roots=[tmp_path])
    first = scanner.scan()

    scanner.clear_cache()
    second = scanner.scan()

    assert second == first
    assert scanner.last_counters.files_reparsed == 1
    assert scanner.last_counters.lines_read == 1


def test_config_dir_env_sets_roots(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """CLAUDE_CONFIG_DIR should point the scanner at `<dir>/projects` for each entry."""
    first_config = tmp_path / "config-a"
    second_config = tmp_path / "config-b" / "projects"
    monkeypatch.setenv("CLAUDE_CONFIG_DIR", f"{first_config}, {second_config}")
    _write_jsonl(
        first_config / "projects" / "demo" / "session.jsonl",
        [_assistant_line("2026-02-15T00:00:01Z", message_id="msg_1", request_id="req_1")],
    )
    _write_jsonl(
        second_config / "other" / "session.jsonl",
        [_assistant_line("2026-02-15T00:00:02Z", message_id="msg_2", request_id="req_2")],
    )

    scanner = ClaudeLogScanner()

    assert scanner.project_roots() == [first_config / "projects", second_config]
    assert len(scanner.scan()) == 2


def test_day_key_follows_timezone() -> None:
    """The event day should be resolved in the requested timezone."""
    line = orjson.dumps(_assistant_line("2026-02-15T03:00:00Z", message_id="msg_1", request_id="req_1"))

    parsed = parse_claude_lines([line], None, timezone=ZoneInfo("America/New_York"))

    assert parsed.events[0].day_key == date(2026, 2, 14)


def _assistant_line(
    timestamp: str,
    message_id: str,
    request_id: str,
    input_tokens: int = 10,
    output_tokens: int = 0,
    cache_read: int = 0,
    cache_creation: int = 0,
    model: str = "claude-sonnet-4-5-20250929",
    cost: float | None = None,
) -> dict[str, object]:
    """Build one assistant message line."""
    line: dict[str, object] = {
        "type": "assistant",
        "timestamp": timestamp,
        "sessionId": "session-1",
        "requestId": request_id,
        "message": {
            "id": message_id,
            "model": model,
            "usage": {
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "cache_read_input_tokens": cache_read,
                "cache_creation_input_tokens": cache_creation,
            },
        },
    }
    if cost is not None:
        line["costUSD"] = cost
    return line


def _write_jsonl(path: Path, events: list[dict[str, object]]) -> None:
    """Write JSONL events to disk, creating parent folders."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        for event in events:
            handle.write(orjson.dumps(event))
            handle.write(b"\n")


def _append_jsonl(path: Path, events: list[dict[str, object]]) -> None:
    """Append JSONL events to an existing file."""
    with path.open("ab") as handle:
        for event in events:
            handle.write(orjson.dumps(event))
            handle.write(b"\n")
