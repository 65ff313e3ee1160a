"""Typed schemas used by the Claude log parser."""

from __future__ import annotations

from dataclasses import dataclass

from usage_ledger_internal.schemas import UsageEvent


@dataclass(frozen=True)
class ClaudeLogEntry:
    """One qualifying assistant message line.

    `dedupe_key` is `(message.id, requestId)` when both are present; streaming writes several
    lines per key and only the first one in a read range is kept.
    """

    event: UsageEvent
    dedupe_key: tuple[str, str] | None
