"""
Statement line matching.

Scores statement lines against open invoices (credit lines) and open
supplier invoices (debit lines) and records the best match per line.
"""

from .engine import AutoMatchResult, MatchCandidate, MatchEngine, MatchSignal

__all__ = ["MatchEngine", "MatchCandidate", "MatchSignal", "AutoMatchResult"]
