"""
State Store (SQLite-based).

Persistent DB for tracking:
- Uploaded statement files (deduplicated per tenant by content hash)
- Bank statements and statement lines
- Match lifecycle and posting claims
- Open items, posting rules and journal entries

Every read and write is scoped by tenant_id.
"""

from .sqlite_store import (
    AllocationRecord,
    BankAccountRecord,
    DocumentImportRecord,
    DocumentRecord,
    JournalEntryRecord,
    PostingRuleLineRecord,
    PostingRuleRecord,
    StatementLineRecord,
    StatementRecord,
    StateStore,
)

__all__ = [
    "StateStore",
    "AllocationRecord",
    "BankAccountRecord",
    "DocumentImportRecord",
    "DocumentRecord",
    "JournalEntryRecord",
    "PostingRuleLineRecord",
    "PostingRuleRecord",
    "StatementLineRecord",
    "StatementRecord",
]
