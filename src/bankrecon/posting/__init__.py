"""
Posting of statement lines as journal entries.

Resolves rule-or-fallback journal lines and writes them through a
journal writer (local store or remote ledger).
"""

from .engine import BatchPostingResult, PostingEngine, PostingResult
from .journal import JournalWriter, LocalJournalWriter
from .rules import PostingContext, PostingRuleError, fallback_lines, resolve_posting_lines

__all__ = [
    "PostingEngine",
    "PostingResult",
    "BatchPostingResult",
    "JournalWriter",
    "LocalJournalWriter",
    "PostingContext",
    "PostingRuleError",
    "fallback_lines",
    "resolve_posting_lines",
]
