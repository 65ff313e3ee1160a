"""Custom exceptions for usage ledger store failures."""


class LedgerError(Exception):
    """Base exception for ledger store errors."""


class LedgerOpenError(LedgerError):
    """Raised when the ledger database cannot be opened."""


class LedgerMigrationError(LedgerError):
    """Raised when schema creation or a migration fails."""


class LedgerQueryError(LedgerError):
    """Raised when a ledger read or write statement fails."""
