"""Parsing helpers for Codex session logs."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from usage_ledger_internal.errors import ParseError
from usage_ledger_internal.log_scan import coerce_token_count, decode_json_object
from usage_ledger_internal.schemas import ParsedLines, UsageEvent
from usage_ledger_internal.timestamps import parse_event_timestamp, resolve_day_key

from .schemas import ZERO_TOTALS, CodexCarriedState, CumulativeTotals

LOGGER = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5"
EVENT_MSG_MARKERS: tuple[bytes, ...] = (b'"type":"event_msg"', b'"type": "event_msg"')
CONTEXT_MARKERS: tuple[bytes, ...] = (
    b'"type":"turn_context"',
    b'"type": "turn_context"',
    b'"type":"session_meta"',
    b'"type": "session_meta"',
)
TOKEN_COUNT_MARKER = b'"token_count"'


def parse_codex_lines(
    lines: list[bytes],
    carried_state: CodexCarriedState | None = None,
    timezone: ZoneInfo | None = None,
) -> ParsedLines:
    """Extract per-event token deltas from freshly read Codex session lines.

    Cumulative `total_token_usage` snapshots are diffed against the previous snapshot, which may
    come from an earlier scan pass through `carried_state`.
    """
    state = carried_state if carried_state is not None else CodexCarriedState()
    events: list[UsageEvent] = []
    lines_malformed = 0

    for raw_line in lines:
        if not passes_prefilter(raw_line):
            continue
        try:
            payload = decode_json_object(raw_line)
        except ParseError as exc:
            lines_malformed += 1
            LOGGER.debug("Skipping malformed Codex log line: %s", exc)
            continue

        event_type = payload.get("type")
        if event_type == "session_meta":
            state = _apply_session_meta(payload, state)
            continue
        if event_type == "turn_context":
            state = _apply_turn_context(payload, state)
            continue
        if event_type != "event_msg":
            continue

        event, state = parse_token_count(payload, state, timezone)
        if event is not None:
            events.append(event)

    return ParsedLines(events=events, carried_state=state, lines_read=len(lines), lines_malformed=lines_malformed)


def passes_prefilter(raw_line: bytes) -> bool:
    """Cheap substring check for context lines and token_count event messages."""
    if any(marker in raw_line for marker in CONTEXT_MARKERS):
        return True
    return TOKEN_COUNT_MARKER in raw_line and any(marker in raw_line for marker in EVENT_MSG_MARKERS)


def parse_token_count(
    payload: dict[str, Any],
    state: CodexCarriedState,
    timezone: ZoneInfo | None = None,
) -> tuple[UsageEvent | None, CodexCarriedState]:
    """Turn one `event_msg` line into a usage event and the advanced carried state."""
    event_timestamp = parse_event_timestamp(payload.get("timestamp"))
    if event_timestamp is None:
        return None, state

    body = payload.get("payload")
    if not isinstance(body, dict) or body.get("type") != "token_count":
        return None, state

    info = body.get("info")
    if not isinstance(info, dict):
        info = {}

    model = (
        _first_str(payload.get("model"), body.get("model"), info.get("model"), info.get("model_name"))
        or state.last_model
        or DEFAULT_MODEL
    )

    total_usage = info.get("total_token_usage")
    last_usage = info.get("last_token_usage")
    if isinstance(total_usage, dict):
        current = _read_totals(total_usage)
        previous = state.last_totals or ZERO_TOTALS
        delta = CumulativeTotals(
            input_tokens=max(current.input_tokens - previous.input_tokens, 0),
            cached_input_tokens=max(current.cached_input_tokens - previous.cached_input_tokens, 0),
            output_tokens=max(current.output_tokens - previous.output_tokens, 0),
        )
        state = replace(state, last_totals=current)
    elif isinstance(last_usage, dict):
        delta = _read_totals(last_usage)
    else:
        return None, state

    event = _build_event(delta, model, event_timestamp, state.session_id, timezone)
    if not event.has_usage:
        return None, state
    return event, state


def _build_event(
    delta: CumulativeTotals,
    model: str,
    event_timestamp: datetime,
    session_id: str | None,
    timezone: ZoneInfo | None,
) -> UsageEvent:
    return UsageEvent(
        day_key=resolve_day_key(event_timestamp, timezone),
        model=model,
        input_tokens=delta.input_tokens,
        output_tokens=delta.output_tokens,
        cache_read_tokens=min(delta.cached_input_tokens, delta.input_tokens),
        cache_creation_tokens=0,
        timestamp=event_timestamp,
        session_id=session_id,
    )


def _apply_session_meta(payload: dict[str, Any], state: CodexCarriedState) -> CodexCarriedState:
    body = payload.get("payload")
    if not isinstance(body, dict):
        return state
    session_id = _first_str(body.get("id"))
    if session_id is None:
        return state
    return replace(state, session_id=session_id)


def _apply_turn_context(payload: dict[str, Any], state: CodexCarriedState) -> CodexCarriedState:
    body = payload.get("payload")
    if not isinstance(body, dict):
        return state
    info = body.get("info")
    model = _first_str(body.get("model"), info.get("model") if isinstance(info, dict) else None)
    if model is None:
        return state
    return replace(state, last_model=model)


def _read_totals(raw_usage: dict[str, Any]) -> CumulativeTotals:
    cached_value = raw_usage.get("cached_input_tokens")
    if cached_value is None:
        cached_value = raw_usage.get("cache_read_input_tokens")
    return CumulativeTotals(
        input_tokens=coerce_token_count(raw_usage.get("input_tokens")),
        cached_input_tokens=coerce_token_count(cached_value),
        output_tokens=coerce_token_count(raw_usage.get("output_tokens")),
    )


def _first_str(*values: Any) -> str | None:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value
    return None
