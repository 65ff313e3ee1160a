"""Parsing helpers for Claude Code JSONL conversation logs."""

from __future__ import annotations

import logging
from typing import Any
from zoneinfo import ZoneInfo

from usage_ledger_internal.errors import ParseError
from usage_ledger_internal.log_scan import coerce_token_count, decode_json_object
from usage_ledger_internal.schemas import ParsedLines, UsageEvent
from usage_ledger_internal.timestamps import parse_event_timestamp, resolve_day_key

from .schemas import ClaudeLogEntry

LOGGER = logging.getLogger(__name__)

ASSISTANT_MARKERS: tuple[bytes, ...] = (b'"type":"assistant"', b'"type": "assistant"')
USAGE_MARKER = b'"usage"'
SYNTHETIC_MODEL = "<synthetic>"


def parse_claude_lines(
    lines: list[bytes],
    carried_state: None = None,
    timezone: ZoneInfo | None = None,
) -> ParsedLines:
    """Extract usage events from freshly read Claude log lines.

    Claude logs are stateless per line, so `carried_state` is always None. Duplicate
    `(message.id, requestId)` keys keep the first occurrence within this batch.
    """
    events: list[UsageEvent] = []
    seen_keys: set[tuple[str, str]] = set()
    lines_malformed = 0

    for raw_line in lines:
        if not passes_prefilter(raw_line):
            continue
        try:
            entry = parse_claude_line(raw_line, timezone)
        except ParseError as exc:
            lines_malformed += 1
            LOGGER.debug("Skipping malformed Claude log line: %s", exc)
            continue
        if entry is None:
            continue

        if entry.dedupe_key is not None:
            if entry.dedupe_key in seen_keys:
                continue
            seen_keys.add(entry.dedupe_key)
        events.append(entry.event)

    return ParsedLines(events=events, carried_state=None, lines_read=len(lines), lines_malformed=lines_malformed)


def passes_prefilter(raw_line: bytes) -> bool:
    """Cheap substring check that rejects lines which cannot be assistant usage messages."""
    if USAGE_MARKER not in raw_line:
        return False
    return any(marker in raw_line for marker in ASSISTANT_MARKERS)


def parse_claude_line(raw_line: bytes, timezone: ZoneInfo | None = None) -> ClaudeLogEntry | None:
    """Parse one log line; return None when it is not a qualifying assistant usage message.

    Raises:
        ParseError: If the line is not a JSON object.
    """
    payload = decode_json_object(raw_line)
    if payload.get("type") != "assistant":
        return None

    event_timestamp = parse_event_timestamp(payload.get("timestamp"))
    if event_timestamp is None:
        return None

    message = payload.get("message")
    if not isinstance(message, dict):
        return None

    model = message.get("model")
    if not isinstance(model, str) or not model.strip() or model == SYNTHETIC_MODEL:
        return None

    usage = message.get("usage")
    if not isinstance(usage, dict):
        return None

    event = UsageEvent(
        day_key=resolve_day_key(event_timestamp, timezone),
        model=model,
        input_tokens=coerce_token_count(usage.get("input_tokens")),
        output_tokens=coerce_token_count(usage.get("output_tokens")),
        cache_read_tokens=coerce_token_count(usage.get("cache_read_input_tokens")),
        cache_creation_tokens=coerce_token_count(usage.get("cache_creation_input_tokens")),
        timestamp=event_timestamp,
        precomputed_cost_usd=_parse_optional_cost(payload.get("costUSD")),
        session_id=_optional_str(payload.get("sessionId")),
    )
    if not event.has_usage:
        return None

    message_id = _optional_str(message.get("id"))
    request_id = _optional_str(payload.get("requestId"))
    dedupe_key = (message_id, request_id) if message_id and request_id else None
    return ClaudeLogEntry(event=event, dedupe_key=dedupe_key)


def _parse_optional_cost(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _optional_str(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None
