"""
Ledger API client.

Creates journal entries in the remote ledger (remote posting mode).
"""

from .client import LedgerAPIError, LedgerClient, LedgerConnectionError, LedgerError

__all__ = [
    "LedgerClient",
    "LedgerError",
    "LedgerAPIError",
    "LedgerConnectionError",
]
