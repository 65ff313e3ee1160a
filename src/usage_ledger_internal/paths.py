"""Shared path utilities for coding-agent-usage-ledger."""

from __future__ import annotations

import os
from pathlib import Path

CLAUDE_CONFIG_DIR_ENV = "CLAUDE_CONFIG_DIR"
CODEX_HOME_ENV = "CODEX_HOME"
DATABASE_PATH_ENV = "USAGE_LEDGER_DB_PATH"


def get_default_database_path() -> Path:
    """Return the ledger DuckDB path, honoring `USAGE_LEDGER_DB_PATH` and XDG conventions."""
    override = os.environ.get(DATABASE_PATH_ENV, "").strip()
    if override:
        return Path(override).expanduser()
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base_data_dir = Path(xdg_data_home).expanduser()
    else:
        base_data_dir = Path("~/.local/share").expanduser()
    return base_data_dir / "coding-agent-usage-ledger" / "usage_ledger.duckdb"


def get_claude_project_roots() -> list[Path]:
    """Return Claude Code project log roots.

    `CLAUDE_CONFIG_DIR` may hold several comma-separated config directories; each one
    gets `projects` appended unless its last segment already is `projects`.
    """
    override = _split_env_paths(CLAUDE_CONFIG_DIR_ENV)
    if override:
        return [_with_subdirectory(path, "projects") for path in override]
    home = Path.home()
    return [
        home / ".config" / "claude" / "projects",
        home / ".claude" / "projects",
    ]


def get_codex_session_roots() -> list[Path]:
    """Return Codex session log roots, including archived sessions."""
    codex_homes = _split_env_paths(CODEX_HOME_ENV) or [Path.home() / ".codex"]
    roots: list[Path] = []
    for codex_home in codex_homes:
        sessions_root = _with_subdirectory(codex_home, "sessions")
        roots.append(sessions_root)
        roots.append(sessions_root.parent / "archived_sessions")
    return roots


def _split_env_paths(env_name: str) -> list[Path]:
    raw_value = os.environ.get(env_name, "").strip()
    if not raw_value:
        return []
    return [Path(part.strip()).expanduser() for part in raw_value.split(",") if part.strip()]


def _with_subdirectory(path: Path, subdirectory: str) -> Path:
    if path.name == subdirectory:
        return path
    return path / subdirectory
