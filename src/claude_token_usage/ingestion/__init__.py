"""Incremental scanner for Claude Code conversation logs."""

from .scanner import ClaudeLogScanner

__all__ = ["ClaudeLogScanner"]
