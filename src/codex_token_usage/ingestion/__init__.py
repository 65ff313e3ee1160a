"""Incremental scanner for Codex session logs."""

from .scanner import CodexLogScanner

__all__ = ["CodexLogScanner"]
