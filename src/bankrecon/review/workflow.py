"""
Reconciliation workflow (operator actions on statement lines).

Line lifecycle:

    unmatched -> suggested | matched          (MatchEngine)
    any unposted state -> manually_matched    (manual_match)
    suggested -> matched                      (bulk_confirm)
    any unposted state -> excluded            (exclude_line)
    unmatched | suggested | partial -> partial | manually_matched   (allocate_payment)
    matched | manually_matched | unmatched -> posted   (PostingEngine)

"posted" is not stored as a match status; a line is posted when its
journal_entry_id is set, and posted lines are immutable here. A line with
payment allocations can only gain further allocations or be posted.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from ..schemas.journal import to_cents
from ..schemas.models import (
    OPEN_INVOICE_STATUSES,
    OPEN_SUPPLIER_INVOICE_STATUSES,
    Direction,
    DocumentType,
    ErrorCode,
    MatchStatus,
)
from ..state_store import StateStore, StatementLineRecord

logger = logging.getLogger(__name__)


class LineState(str, Enum):
    """Derived state of a statement line, including 'posted'."""

    UNMATCHED = "unmatched"
    SUGGESTED = "suggested"
    MATCHED = "matched"
    MANUALLY_MATCHED = "manually_matched"
    PARTIALLY_MATCHED = "partial"
    EXCLUDED = "excluded"
    POSTED = "posted"


@dataclass
class WorkflowResult:
    """Result of an operator action on a line."""

    success: bool
    line_id: int
    error_code: ErrorCode | None = None
    message: str | None = None

    @classmethod
    def failed(cls, line_id: int, error_code: ErrorCode, message: str) -> "WorkflowResult":
        logger.warning(f"Line {line_id}: {message}")
        return cls(success=False, line_id=line_id, error_code=error_code, message=message)


@dataclass
class AllocationResult(WorkflowResult):
    """Result of allocating a line across documents."""

    allocations: list[tuple[int, Decimal]] = field(default_factory=list)
    match_status: MatchStatus | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "line_id": self.line_id,
            "error_code": self.error_code.value if self.error_code else None,
            "message": self.message,
            "allocations": [
                {"document_id": document_id, "amount": str(amount)}
                for document_id, amount in self.allocations
            ],
            "match_status": self.match_status.value if self.match_status else None,
        }


# Lines that can receive (further) payment allocations
ALLOCATABLE_STATUSES = (
    MatchStatus.UNMATCHED,
    MatchStatus.SUGGESTED,
    MatchStatus.PARTIALLY_MATCHED,
)


def line_state(line: StatementLineRecord) -> LineState:
    """Derive the lifecycle state of a line."""
    if line.is_posted:
        return LineState.POSTED
    return LineState(line.match_status.value)


def _open_statuses(document_type: DocumentType) -> tuple:
    if document_type == DocumentType.INVOICE:
        return OPEN_INVOICE_STATUSES
    return OPEN_SUPPLIER_INVOICE_STATUSES


class ReconciliationWorkflow:
    """
    Manages operator-driven reconciliation.

    Responsibilities:
    - Manual override of the automatic match
    - Bulk confirmation of suggestions
    - Exclusion of lines that need no document
    - Allocation of one payment across several documents
    """

    def __init__(self, store: StateStore):
        """Initialize with state store."""
        self.store = store

    def manual_match(
        self,
        tenant_id: str,
        line_id: int,
        document_type: DocumentType,
        document_id: int,
    ) -> WorkflowResult:
        """
        Match a line to a document chosen by the operator.

        Replaces any prior automatic status; confidence is cleared and the
        document id for the other type is removed.

        Args:
            tenant_id: Owning tenant
            line_id: Statement line
            document_type: invoice (credit lines) or supplier_invoice (debit lines)
            document_id: Chosen document

        Returns:
            WorkflowResult; failures carry LINE_NOT_FOUND, ALREADY_POSTED,
            INVALID_STATE, DIRECTION_MISMATCH or DOCUMENT_NOT_FOUND
        """
        line = self.store.get_statement_line(tenant_id, line_id)
        if line is None:
            return WorkflowResult.failed(line_id, ErrorCode.LINE_NOT_FOUND, "Line not found")
        if line.is_posted:
            return WorkflowResult.failed(
                line_id, ErrorCode.ALREADY_POSTED, "Posted lines cannot be re-matched"
            )
        if self.store.get_line_allocations(tenant_id, line_id):
            return WorkflowResult.failed(
                line_id, ErrorCode.INVALID_STATE, "Line has payment allocations"
            )

        expected = DocumentType.for_direction(line.direction)
        if document_type != expected:
            side = "Credit" if line.direction == Direction.CREDIT else "Debit"
            return WorkflowResult.failed(
                line_id,
                ErrorCode.DIRECTION_MISMATCH,
                f"{side} lines can only be matched to {expected.value} documents",
            )

        document = self.store.get_document(tenant_id, document_type, document_id)
        if document is None:
            return WorkflowResult.failed(
                line_id,
                ErrorCode.DOCUMENT_NOT_FOUND,
                f"{document_type.value} {document_id} not found",
            )

        if not self.store.set_manual_match(tenant_id, line_id, document_type, document_id):
            return WorkflowResult.failed(
                line_id, ErrorCode.ALREADY_POSTED, "Line is being posted or was posted"
            )

        logger.info(
            f"Line {line_id} manually matched to {document_type.value} {document.invoice_number}"
        )
        return WorkflowResult(success=True, line_id=line_id)

    def bulk_confirm(self, tenant_id: str, statement_id: int) -> int:
        """Promote every suggested line of a statement to matched.

        Returns:
            Number of lines confirmed
        """
        confirmed = self.store.confirm_suggested(tenant_id, statement_id)
        logger.info(f"Confirmed {confirmed} suggested lines on statement {statement_id}")
        return confirmed

    def exclude_line(self, tenant_id: str, line_id: int) -> WorkflowResult:
        """Dismiss a line from reconciliation (fees, internal transfers)."""
        line = self.store.get_statement_line(tenant_id, line_id)
        if line is None:
            return WorkflowResult.failed(line_id, ErrorCode.LINE_NOT_FOUND, "Line not found")
        if line.is_posted:
            return WorkflowResult.failed(
                line_id, ErrorCode.ALREADY_POSTED, "Posted lines cannot be excluded"
            )
        if self.store.get_line_allocations(tenant_id, line_id):
            return WorkflowResult.failed(
                line_id, ErrorCode.INVALID_STATE, "Line has payment allocations"
            )
        if not self.store.exclude_line(tenant_id, line_id):
            return WorkflowResult.failed(
                line_id, ErrorCode.ALREADY_POSTED, "Line is being posted or was posted"
            )

        logger.info(f"Line {line_id} excluded")
        return WorkflowResult(success=True, line_id=line_id)

    def allocate_payment(
        self,
        tenant_id: str,
        line_id: int,
        allocations: list[tuple[int, Decimal]] | None = None,
    ) -> AllocationResult:
        """
        Spread one bank line over several open documents.

        Credit lines settle invoices, debit lines supplier invoices. Each
        document takes at most its remaining amount and becomes
        partially_paid or paid. The line turns manually_matched once its
        whole amount is allocated and stays 'partial' until then; a partial
        line accepts further allocations.

        Args:
            tenant_id: Owning tenant
            line_id: Statement line
            allocations: (document id, amount) pairs. When omitted, the
                unallocated amount goes to open documents oldest due date
                first (FIFO).

        Returns:
            AllocationResult; failures carry LINE_NOT_FOUND, ALREADY_POSTED,
            INVALID_STATE, DOCUMENT_NOT_FOUND, OVER_ALLOCATION or
            NO_CANDIDATE_DOCUMENT
        """
        line = self.store.get_statement_line(tenant_id, line_id)
        if line is None:
            return AllocationResult.failed(line_id, ErrorCode.LINE_NOT_FOUND, "Line not found")
        if line.is_posted:
            return AllocationResult.failed(
                line_id, ErrorCode.ALREADY_POSTED, "Posted lines cannot be allocated"
            )
        if line.match_status not in ALLOCATABLE_STATUSES:
            return AllocationResult.failed(
                line_id,
                ErrorCode.INVALID_STATE,
                f"Lines in state '{line.match_status.value}' cannot be allocated",
            )

        document_type = DocumentType.for_direction(line.direction)
        already = sum(
            (a.amount for a in self.store.get_line_allocations(tenant_id, line_id)),
            Decimal("0"),
        )
        unallocated = line.amount - already

        if allocations is None:
            allocations = self._fifo_allocations(tenant_id, document_type, unallocated)
            if not allocations:
                return AllocationResult.failed(
                    line_id,
                    ErrorCode.NO_CANDIDATE_DOCUMENT,
                    f"No open {document_type.value} documents to allocate to",
                )
        else:
            allocations = [(document_id, to_cents(amount)) for document_id, amount in allocations]
            error = self._check_allocations(tenant_id, document_type, allocations, unallocated)
            if error is not None:
                return AllocationResult.failed(line_id, *error)

        status = self.store.allocate_line(tenant_id, line_id, document_type, allocations)
        if status is None:
            return AllocationResult.failed(
                line_id, ErrorCode.INVALID_STATE, "Line or documents changed while allocating"
            )

        logger.info(
            f"Line {line_id} allocated to {len(allocations)} {document_type.value} "
            f"document(s), now {status.value}"
        )
        return AllocationResult(
            success=True, line_id=line_id, allocations=allocations, match_status=status
        )

    def _fifo_allocations(
        self, tenant_id: str, document_type: DocumentType, unallocated: Decimal
    ) -> list[tuple[int, Decimal]]:
        """Fill open documents oldest due date first (undated last) until the amount runs out."""
        documents = sorted(
            self.store.get_open_documents(tenant_id, document_type),
            key=lambda d: (d.due_date is None, d.due_date or "", d.id),
        )
        allocations = []
        for document in documents:
            if unallocated <= 0:
                break
            amount = min(document.remaining, unallocated)
            if amount > 0:
                allocations.append((document.id, amount))
                unallocated -= amount
        return allocations

    def _check_allocations(
        self,
        tenant_id: str,
        document_type: DocumentType,
        allocations: list[tuple[int, Decimal]],
        unallocated: Decimal,
    ) -> tuple[ErrorCode, str] | None:
        if not allocations:
            return ErrorCode.INVALID_STATE, "No allocations given"

        document_ids = [document_id for document_id, _ in allocations]
        if len(set(document_ids)) != len(document_ids):
            return ErrorCode.INVALID_STATE, "A document appears more than once"

        for document_id, amount in allocations:
            if amount <= 0:
                return ErrorCode.INVALID_STATE, f"Allocation to {document_id} must be positive"
            document = self.store.get_document(tenant_id, document_type, document_id)
            if document is None:
                return ErrorCode.DOCUMENT_NOT_FOUND, f"{document_type.value} {document_id} not found"
            if document.status not in {s.value for s in _open_statuses(document_type)}:
                return (
                    ErrorCode.INVALID_STATE,
                    f"{document_type.value} {document.invoice_number} is {document.status}",
                )
            if amount > document.remaining:
                return (
                    ErrorCode.OVER_ALLOCATION,
                    f"{amount} exceeds the {document.remaining} left on {document.invoice_number}",
                )

        total = sum((amount for _, amount in allocations), Decimal("0"))
        if total > unallocated:
            return ErrorCode.OVER_ALLOCATION, f"{total} exceeds the {unallocated} left on the line"
        return None

    def line_state(self, tenant_id: str, line_id: int) -> LineState | None:
        """Current lifecycle state of a line, or None if it does not exist."""
        line = self.store.get_statement_line(tenant_id, line_id)
        return line_state(line) if line else None
