"""Claude Code log scanning."""
