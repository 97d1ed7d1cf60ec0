"""
Journal writers.

A journal writer is the only way the posting engine creates entries. The
local writer stores entries in the state store; the remote one is
LedgerClient, which has the same create_journal_entry signature.
"""

import logging
from typing import Protocol

from ..schemas.journal import ImbalancedPostingError, JournalLine, validate_journal_lines
from ..state_store import StateStore

logger = logging.getLogger(__name__)


class JournalWriter(Protocol):
    """Creates a balanced journal entry and returns its ID."""

    def create_journal_entry(
        self,
        tenant_id: str,
        entry_date: str,
        lines: list[JournalLine],
        reference: str,
        description: str,
    ) -> int: ...


class LocalJournalWriter:
    """Writes journal entries to the local state store."""

    def __init__(self, store: StateStore):
        self.store = store

    def create_journal_entry(
        self,
        tenant_id: str,
        entry_date: str,
        lines: list[JournalLine],
        reference: str,
        description: str,
    ) -> int:
        """
        Validate and store a journal entry.

        Raises:
            ImbalancedPostingError: Lines are unbalanced or malformed
        """
        errors = validate_journal_lines(lines)
        if errors:
            raise ImbalancedPostingError(errors)

        entry_id = self.store.create_journal_entry(
            tenant_id=tenant_id,
            entry_date=entry_date,
            reference=reference,
            description=description,
            lines=lines,
        )
        logger.debug(f"Stored journal entry {entry_id} ({reference})")
        return entry_id
