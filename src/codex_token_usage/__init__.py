"""Codex CLI session log scanning."""
