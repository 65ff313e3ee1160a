"""Typed schemas used by the Codex log parser."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class CumulativeTotals:
    """Running token counters reported by one `total_token_usage` snapshot."""

    input_tokens: int
    cached_input_tokens: int
    output_tokens: int


ZERO_TOTALS = CumulativeTotals(input_tokens=0, cached_input_tokens=0, output_tokens=0)


@dataclass(frozen=True)
class CodexCarriedState:
    """Context carried from one line of a session file to the next, and across scan passes.

    Attributes:
        last_model: Model announced by the most recent `turn_context` line.
        last_totals: Most recent cumulative totals, used to diff the next snapshot.
        session_id: Session id from the `session_meta` line.
    """

    last_model: str | None = None
    last_totals: CumulativeTotals | None = None
    session_id: str | None = None
