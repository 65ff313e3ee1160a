"""Custom exceptions for log scanning failures."""


class ScanError(Exception):
    """Base exception for log scanning errors."""


class ParseError(ScanError):
    """Raised when one log line cannot be decoded."""
