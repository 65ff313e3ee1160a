"""Map raw vendor model identifiers onto canonical pricing-table keys."""

from __future__ import annotations

import re
from enum import StrEnum


class Provider(StrEnum):
    """Model vendors recognized by the ledger."""

    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    GOOGLE = "google"
    DEEPSEEK = "deepseek"
    OTHER = "other"


# Date suffixes are only stripped when the remaining base is one of these keys, so an unknown
# model's dated variant is never merged into another model's bucket.
KNOWN_CLAUDE_BASES: frozenset[str] = frozenset(
    {
        "claude-haiku-4-5",
        "claude-opus-4-5",
        "claude-sonnet-4-5",
        "claude-opus-4-20250514",
        "claude-opus-4-1",
        "claude-sonnet-4-20250514",
        "claude-opus-4-6",
    }
)
KNOWN_CODEX_BASES: frozenset[str] = frozenset({"gpt-5", "gpt-5.1", "gpt-5.2"})

_CLAUDE_VENDOR_PREFIXES = ("anthropic.", "anthropic/")
_OPENAI_VENDOR_PREFIXES = ("openai/",)
_CODEX_MARKER = "-codex"
_VERSION_SUFFIX = re.compile(r"-v\d+:\d+$")
_DATE_SUFFIX = re.compile(r"-\d{8}$")


def normalize_model(raw_model: str, provider: Provider | str) -> str:
    """Normalize a model name for pricing lookup, dispatching on provider."""
    if provider == Provider.OPENAI:
        return normalize_codex_model(raw_model)
    if provider == Provider.ANTHROPIC:
        return normalize_claude_model(raw_model)
    return raw_model.strip()


def normalize_codex_model(raw_model: str) -> str:
    """Normalize an OpenAI/Codex model name.

    `openai/gpt-5` becomes `gpt-5`; `gpt-5.2-codex` becomes `gpt-5.2` because `gpt-5.2` is a
    known base. Unknown bases keep their `-codex` marker.
    """
    trimmed = _strip_prefixes(raw_model.strip(), _OPENAI_VENDOR_PREFIXES)

    marker_index = trimmed.find(_CODEX_MARKER)
    if marker_index != -1:
        base = trimmed[:marker_index]
        if base in KNOWN_CODEX_BASES:
            return base
    return trimmed


def normalize_claude_model(raw_model: str) -> str:
    """Normalize an Anthropic/Claude model name.

    Handles Bedrock/Vertex decorations: `us.anthropic.claude-sonnet-4-5-20250929-v1:0` and
    `claude-opus-4-5@20251101` both reduce to their dateless canonical key when the base is known.
    """
    trimmed = _strip_prefixes(raw_model.strip(), _CLAUDE_VENDOR_PREFIXES)

    if "claude-" in trimmed:
        tail = trimmed.rsplit(".", 1)[-1]
        if tail.startswith("claude-"):
            trimmed = tail

    trimmed = trimmed.replace("@", "-")
    version_match = _VERSION_SUFFIX.search(trimmed)
    while version_match is not None:
        trimmed = trimmed[: version_match.start()]
        version_match = _VERSION_SUFFIX.search(trimmed)

    date_match = _DATE_SUFFIX.search(trimmed)
    if date_match is not None:
        base = trimmed[: date_match.start()]
        if base in KNOWN_CLAUDE_BASES:
            return base
    return trimmed


def _strip_prefixes(value: str, prefixes: tuple[str, ...]) -> str:
    stripped = value
    while stripped.startswith(prefixes):
        for prefix in prefixes:
            if stripped.startswith(prefix):
                stripped = stripped[len(prefix) :]
                break
    return stripped
