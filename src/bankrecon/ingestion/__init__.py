"""
Statement file ingestion.

Deduplicates uploads per tenant by content hash, records each file as a
DocumentImport, and turns XML uploads into statements.
"""

from .service import (
    CsvImportResult,
    FileIngestor,
    ImportOutcome,
    ImportResult,
    detect_format,
    iban_account_number,
)

__all__ = [
    "FileIngestor",
    "ImportResult",
    "ImportOutcome",
    "CsvImportResult",
    "detect_format",
    "iban_account_number",
]
