"""
CLI runner module.

Provides commands:
- ingest / import-csv: Load statements
- match / confirm / manual-match / exclude / allocate: Reconcile lines
- post / post-line: Create journal entries
- reconcile: Match and post in one run
- status: Statement overview
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
