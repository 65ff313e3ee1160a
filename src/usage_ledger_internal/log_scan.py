"""Incremental JSONL reading shared by the Claude and Codex scanners."""

from __future__ import annotations

import logging
import math
import os
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Callable

import orjson

from .errors import ParseError
from .schemas import FileScanState, ParsedLines, ScanCounters, UsageEvent

LOGGER = logging.getLogger(__name__)

LineBatchParser = Callable[[list[bytes], Any], ParsedLines]


class IncrementalLogReader:
    """Reads JSONL files under a set of roots, re-reading only bytes appended since the last pass.

    Each file's resume state lives in a plain dict keyed by path. A pass opens, reads a bounded
    byte range, and closes every file; nothing stays open between passes.
    """

    def __init__(self, parse_lines: LineBatchParser) -> None:
        self._parse_lines = parse_lines
        self._file_states: dict[str, FileScanState] = {}
        self.last_counters = ScanCounters()

    def scan(self, roots: Iterable[Path]) -> list[UsageEvent]:
        """Scan every log file under `roots` and return all events, cached and new."""
        counters = ScanCounters()
        events: list[UsageEvent] = []
        touched_paths: set[str] = set()

        for root in roots:
            if not root.is_dir():
                continue
            counters.roots_scanned += 1
            for log_file_path in discover_log_files(root):
                path_key = str(log_file_path)
                if path_key in touched_paths:
                    continue
                touched_paths.add(path_key)
                counters.files_scanned += 1
                events.extend(self._scan_file(log_file_path, counters))

        for stale_path in [path for path in self._file_states if path not in touched_paths]:
            del self._file_states[stale_path]
            counters.files_dropped += 1

        counters.events_emitted = len(events)
        self.last_counters = counters
        LOGGER.debug(
            "Scanned %d files: %d unchanged, %d incremental, %d reparsed, %d lines read, %d malformed",
            counters.files_scanned,
            counters.files_skipped_unchanged,
            counters.files_read_incrementally,
            counters.files_reparsed,
            counters.lines_read,
            counters.lines_malformed,
        )
        return events

    def file_state(self, log_file_path: Path | str) -> FileScanState | None:
        """Return the resume state recorded for one file, if any."""
        return self._file_states.get(str(log_file_path))

    def clear(self) -> None:
        """Drop all resume state, forcing a full re-parse on the next pass."""
        self._file_states.clear()

    def _scan_file(self, log_file_path: Path, counters: ScanCounters) -> list[UsageEvent]:
        path_key = str(log_file_path)
        try:
            stat_result = log_file_path.stat()
        except OSError as exc:
            LOGGER.debug("Log file vanished before stat %s: %s", log_file_path, exc)
            self._file_states.pop(path_key, None)
            return []

        size = stat_result.st_size
        mtime_ns = stat_result.st_mtime_ns
        if size <= 0:
            self._file_states.pop(path_key, None)
            return []

        cached = self._file_states.get(path_key)
        if cached is not None and cached.size_at_last_scan == size and cached.mtime_at_last_scan == mtime_ns:
            counters.files_skipped_unchanged += 1
            return list(cached.extracted_events)

        incremental = (
            cached is not None
            and size > cached.size_at_last_scan
            and 0 < cached.byte_offset_consumed <= size
        )
        start_offset = cached.byte_offset_consumed if incremental else 0
        carried_state = cached.carried_state if incremental else None

        try:
            data = _read_byte_range(log_file_path, start_offset, size)
        except OSError as exc:
            counters.files_failed += 1
            counters.failed_files.append(path_key)
            LOGGER.warning("Failed to read %s: %s", log_file_path, exc)
            return list(cached.extracted_events) if cached is not None else []

        lines, consumed_bytes = split_complete_lines(data)
        parsed = self._parse_lines(lines, carried_state)
        counters.lines_read += parsed.lines_read
        counters.lines_malformed += parsed.lines_malformed

        if incremental:
            assert cached is not None
            counters.files_read_incrementally += 1
            extracted_events = (*cached.extracted_events, *parsed.events)
        else:
            counters.files_reparsed += 1
            extracted_events = tuple(parsed.events)

        self._file_states[path_key] = FileScanState(
            path=path_key,
            size_at_last_scan=size,
            mtime_at_last_scan=mtime_ns,
            byte_offset_consumed=start_offset + consumed_bytes,
            carried_state=parsed.carried_state,
            extracted_events=extracted_events,
        )
        return list(extracted_events)


def discover_log_files(root: Path) -> list[Path]:
    """Recursively discover JSONL files in sorted order, skipping hidden entries."""
    results: list[Path] = []
    try:
        with os.scandir(root) as iterator:
            entries = sorted(iterator, key=lambda entry: entry.name)
    except OSError as exc:
        LOGGER.debug("Cannot list %s: %s", root, exc)
        return results

    for entry in entries:
        if entry.name.startswith("."):
            continue
        entry_path = Path(entry.path)
        try:
            if entry.is_dir(follow_symlinks=False):
                results.extend(discover_log_files(entry_path))
            elif entry.is_file() and entry.name.endswith(".jsonl"):
                results.append(entry_path)
        except OSError:
            continue
    return results


def split_complete_lines(data: bytes) -> tuple[list[bytes], int]:
    """Split raw bytes into complete lines and return how many bytes they cover.

    A trailing fragment without a newline counts as complete only if it already decodes as a
    JSON object; otherwise it is left unconsumed because the writer may still be appending to it.
    """
    last_newline = data.rfind(b"\n")
    consumed_bytes = last_newline + 1
    lines = [line for line in data[:consumed_bytes].split(b"\n") if line.strip()]

    tail = data[consumed_bytes:]
    if not tail.strip():
        return lines, len(data)
    try:
        decode_json_object(tail)
    except ParseError:
        return lines, consumed_bytes
    lines.append(tail)
    return lines, len(data)


def decode_json_object(raw_line: bytes) -> dict[str, Any]:
    """Decode one JSONL line into a JSON object."""
    try:
        parsed = orjson.loads(raw_line)
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Malformed JSON line: {exc}.") from exc
    if not isinstance(parsed, dict):
        raise ParseError(f"Expected JSON object, got {type(parsed).__name__}.")
    return parsed


def coerce_token_count(value: Any) -> int:
    """Leniently convert a raw token counter to a non-negative int."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return max(value, 0)
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        return max(math.floor(value), 0)
    if isinstance(value, str):
        try:
            return max(int(value.strip()), 0)
        except ValueError:
            return 0
    return 0


def _read_byte_range(log_file_path: Path, start_offset: int, end_offset: int) -> bytes:
    with log_file_path.open("rb") as handle:
        handle.seek(start_offset)
        return handle.read(end_offset - start_offset)
