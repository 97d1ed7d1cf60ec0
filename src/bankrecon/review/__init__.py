"""
Reconciliation review module.

Operator actions on statement lines: manual match, bulk confirm of
suggestions, exclusion and partial payment allocation.
"""

from .workflow import (
    AllocationResult,
    LineState,
    ReconciliationWorkflow,
    WorkflowResult,
    line_state,
)

__all__ = [
    "ReconciliationWorkflow",
    "WorkflowResult",
    "AllocationResult",
    "LineState",
    "line_state",
]
