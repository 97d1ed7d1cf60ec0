"""Statement reconciliation orchestration service.

Runs the automatic part of the pipeline for one statement:
- Auto-match unmatched lines against open invoices and supplier invoices
- Post matched and manually matched lines as journal entries

Suggestions are never confirmed here; bulk confirmation stays an operator
action in ReconciliationWorkflow.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from ..matching import MatchEngine
from ..posting import PostingEngine
from ..schemas.models import ErrorCode, StatementStatus

if TYPE_CHECKING:
    from ..config import Config
    from ..posting import JournalWriter
    from ..state_store import StateStore

logger = logging.getLogger(__name__)


class ReconciliationState(str, Enum):
    """Possible states for a reconciliation run."""

    MATCHING = "MATCHING"
    POSTING = "POSTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class ReconciliationResult:
    """Result of a reconciliation run."""

    statement_id: int
    state: ReconciliationState
    lines_considered: int = 0
    auto_matched: int = 0
    suggested: int = 0
    posted: int = 0
    posting_failures: int = 0
    statement_status: StatementStatus | None = None
    error_code: ErrorCode | None = None
    duration_ms: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        """Return True if the run completed without fatal errors."""
        return self.state == ReconciliationState.COMPLETED


class ReconciliationService:
    """Orchestrates matching and posting for a statement.

    Safe to run repeatedly: matching only touches unmatched lines and
    posting skips lines that already carry a journal entry.

    Usage:
        service = ReconciliationService(state_store, writer, config)
        result = service.run_statement("tenant-a", statement_id)
    """

    def __init__(
        self,
        state_store: StateStore,
        writer: JournalWriter,
        config: Config,
    ) -> None:
        """Initialize the reconciliation service.

        Args:
            state_store: State store for persistence.
            writer: Journal writer used for posting.
            config: Application configuration.
        """
        self.store = state_store
        self.config = config
        self.match_engine = MatchEngine(state_store, config.matching)
        self.posting_engine = PostingEngine(state_store, writer, config.posting)

    def run_statement(
        self, tenant_id: str, statement_id: int, post: bool = True
    ) -> ReconciliationResult:
        """Run auto-match and, unless post is False, batch posting.

        Args:
            tenant_id: Owning tenant.
            statement_id: Statement to reconcile.
            post: Post matched lines after matching.

        Returns:
            ReconciliationResult with counts and final state.
        """
        start_time = time.time()
        result = ReconciliationResult(
            statement_id=statement_id, state=ReconciliationState.MATCHING
        )

        if self.store.get_statement(tenant_id, statement_id) is None:
            result.state = ReconciliationState.FAILED
            result.error_code = ErrorCode.STATEMENT_NOT_FOUND
            result.errors.append(f"Statement {statement_id} not found")
            return result

        try:
            logger.info(f"Reconciling statement {statement_id} - matching")
            match_result = self.match_engine.auto_match(tenant_id, statement_id)
            result.lines_considered = match_result.total
            result.auto_matched = match_result.auto_matched
            result.suggested = match_result.suggested

            if post:
                result.state = ReconciliationState.POSTING
                logger.info(f"Reconciling statement {statement_id} - posting")
                batch = self.posting_engine.post_all_matched(tenant_id, statement_id)
                result.posted = batch.posted
                result.posting_failures = len(batch.failures)
                result.statement_status = batch.status
                result.errors.extend(
                    f"line {f.line_id}: {f.message}" for f in batch.failures
                )

            result.state = ReconciliationState.COMPLETED
            logger.info(
                f"Reconciliation of statement {statement_id} completed: "
                f"{result.auto_matched} matched, {result.suggested} suggested, "
                f"{result.posted} posted"
            )

        except Exception as e:
            logger.exception(f"Reconciliation of statement {statement_id} failed: {e}")
            result.state = ReconciliationState.FAILED
            result.errors.append(f"Fatal error: {e}")

        result.duration_ms = int((time.time() - start_time) * 1000)
        return result
