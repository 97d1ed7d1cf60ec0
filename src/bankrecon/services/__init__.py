"""Orchestration services."""

from .reconciliation import ReconciliationResult, ReconciliationService, ReconciliationState

__all__ = ["ReconciliationService", "ReconciliationResult", "ReconciliationState"]
