"""
SSOT (Single Source of Truth) schemas for the pipeline.

These canonical schemas are the ONLY models used across all modules.
No duplicated "near-same" models allowed.
"""

from .hashing import HASH_LENGTH, compute_file_hash, is_valid_file_hash, short_hash
from .journal import (
    ImbalancedPostingError,
    JournalError,
    JournalLine,
    to_cents,
    validate_journal_lines,
)
from .models import (
    OPEN_INVOICE_STATUSES,
    OPEN_SUPPLIER_INVOICE_STATUSES,
    POSTABLE_STATUSES,
    Direction,
    DocumentType,
    ErrorCode,
    ImportFormat,
    ImportStatus,
    InvoiceStatus,
    MatchStatus,
    ParsedLine,
    ParseResult,
    StatementStatus,
    SupplierInvoiceStatus,
    TransactionType,
)

__all__ = [
    # Hashing
    "HASH_LENGTH",
    "compute_file_hash",
    "is_valid_file_hash",
    "short_hash",
    # Journal
    "ImbalancedPostingError",
    "JournalError",
    "JournalLine",
    "to_cents",
    "validate_journal_lines",
    # Models
    "OPEN_INVOICE_STATUSES",
    "OPEN_SUPPLIER_INVOICE_STATUSES",
    "POSTABLE_STATUSES",
    "Direction",
    "DocumentType",
    "ErrorCode",
    "ImportFormat",
    "ImportStatus",
    "InvoiceStatus",
    "MatchStatus",
    "ParsedLine",
    "ParseResult",
    "StatementStatus",
    "SupplierInvoiceStatus",
    "TransactionType",
]
