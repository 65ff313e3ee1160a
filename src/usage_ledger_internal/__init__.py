"""Internal helpers shared by the usage scanners and the ledger."""
