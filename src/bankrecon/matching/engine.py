"""Matching engine for correlating statement lines with open invoices.

Credit lines are scored against open customer invoices, debit lines against
open supplier invoices. Scoring is integer and additive; the amount signal
is a hard gate, so a candidate whose amount is off by 1% or more scores 0
no matter how well the other signals agree.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING

from ..config import MatchingConfig
from ..schemas.models import DocumentType, MatchStatus

if TYPE_CHECKING:
    from ..state_store import DocumentRecord, StateStore, StatementLineRecord

logger = logging.getLogger(__name__)

_NON_DIGITS = re.compile(r"\D")


@dataclass
class MatchSignal:
    """Individual signal contribution to a match confidence."""

    signal: str
    points: int
    detail: str


@dataclass
class MatchCandidate:
    """Scored pairing of a statement line with one open document."""

    document_id: int
    document_type: DocumentType
    confidence: int
    signals: list[MatchSignal] = field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [s.signal for s in self.signals]

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "document_id": self.document_id,
            "document_type": self.document_type.value,
            "confidence": self.confidence,
            "signals": [
                {"signal": s.signal, "points": s.points, "detail": s.detail} for s in self.signals
            ],
        }


@dataclass
class AutoMatchResult:
    """Outcome of auto-matching one statement.

    matched counts every line that acquired a match (matched or suggested);
    total counts the unmatched lines that were considered.
    """

    matched: int = 0
    total: int = 0
    auto_matched: int = 0
    suggested: int = 0
    candidates: dict[int, MatchCandidate] = field(default_factory=dict)  # line id -> best

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "matched": self.matched,
            "total": self.total,
            "auto_matched": self.auto_matched,
            "suggested": self.suggested,
            "candidates": {str(k): v.to_dict() for k, v in self.candidates.items()},
        }


class MatchEngine:
    """Engine for matching statement lines to open receivables and payables.

    Signals:
    - Amount: exact (40) or within 1% of the open amount (20); required
    - Reference: containment (40) or digits-only containment (25)
    - Counterparty name: case-insensitive containment (15)
    - Due date: line date within the window of the due date (5)

    The best candidate per line wins when it reaches the suggest threshold;
    ties go to the lowest document id.
    """

    WEIGHT_AMOUNT_EXACT = 40
    WEIGHT_AMOUNT_NEAR = 20
    WEIGHT_REFERENCE = 40
    WEIGHT_REFERENCE_DIGITS = 25
    WEIGHT_PARTNER = 15
    WEIGHT_DUE_DATE = 5

    # Amount tolerances
    EXACT_TOLERANCE = Decimal("0.01")
    NEAR_RATIO = Decimal("0.01")
    # Digit strings this short are too ambiguous to compare
    MIN_REFERENCE_DIGITS = 4

    def __init__(self, state_store: StateStore, config: MatchingConfig | None = None) -> None:
        """Initialize the matching engine.

        Args:
            state_store: State store for lines and open documents.
            config: Thresholds and due-date window (defaults if omitted).
        """
        self.store = state_store
        self.config = config or MatchingConfig()

    def auto_match(self, tenant_id: str, statement_id: int) -> AutoMatchResult:
        """Score every unmatched line of a statement and persist the best match.

        Only lines still 'unmatched' are read and written, so running this
        twice never changes an already classified line.

        Args:
            tenant_id: Owning tenant.
            statement_id: Statement to match.

        Returns:
            AutoMatchResult with matched and considered counts.
        """
        result = AutoMatchResult()
        lines = self.store.get_statement_lines(
            tenant_id, statement_id, match_status=MatchStatus.UNMATCHED
        )
        result.total = len(lines)
        if not lines:
            return result

        # Candidate pools are read once per statement, ordered by id
        pools: dict[DocumentType, list[DocumentRecord]] = {}

        for line in lines:
            document_type = DocumentType.for_direction(line.direction)
            if document_type not in pools:
                pools[document_type] = self.store.get_open_documents(tenant_id, document_type)

            best = self.find_best_candidate(line, pools[document_type])
            if best is None:
                continue

            status = (
                MatchStatus.MATCHED
                if best.confidence >= self.config.auto_match_threshold
                else MatchStatus.SUGGESTED
            )
            written = self.store.set_auto_match(
                tenant_id,
                line.id,
                status,
                best.confidence,
                best.document_type,
                best.document_id,
            )
            if not written:
                logger.debug(f"Line {line.id} changed state during matching, skipped")
                continue

            result.matched += 1
            result.candidates[line.id] = best
            if status == MatchStatus.MATCHED:
                result.auto_matched += 1
            else:
                result.suggested += 1

            logger.info(
                f"Line {line.id} {status.value} to {best.document_type.value} "
                f"{best.document_id} (confidence {best.confidence}: {', '.join(best.reasons)})"
            )

        logger.info(
            f"Auto-match statement {statement_id}: {result.matched} of {result.total} lines "
            f"matched ({result.auto_matched} auto, {result.suggested} suggested)"
        )
        return result

    def find_best_candidate(
        self, line: StatementLineRecord, documents: list[DocumentRecord]
    ) -> MatchCandidate | None:
        """Highest-scoring candidate at or above the suggest threshold.

        Documents are visited in id order and only a strictly higher score
        replaces the current best, so ties resolve to the lowest id.
        """
        best: MatchCandidate | None = None
        for document in sorted(documents, key=lambda d: d.id):
            candidate = self.score_candidate(line, document)
            if candidate.confidence < self.config.suggest_threshold:
                continue
            if best is None or candidate.confidence > best.confidence:
                best = candidate
        return best

    def score_candidate(
        self, line: StatementLineRecord, document: DocumentRecord
    ) -> MatchCandidate:
        """Score a single line/document pair.

        A candidate failing the amount gate gets confidence 0 and no signals.
        """
        candidate = MatchCandidate(
            document_id=document.id,
            document_type=document.document_type,
            confidence=0,
        )

        amount_signal = self._score_amount(line.amount, document.remaining)
        if amount_signal is None:
            return candidate
        candidate.signals.append(amount_signal)

        for signal in (
            self._score_reference(line.payment_reference, document.invoice_number),
            self._score_partner(line.partner_name, document.partner_name),
            self._score_due_date(line.line_date, document.due_date),
        ):
            if signal is not None:
                candidate.signals.append(signal)

        candidate.confidence = sum(s.points for s in candidate.signals)
        return candidate

    def _score_amount(self, amount: Decimal, total: Decimal) -> MatchSignal | None:
        """Score amount proximity; None means the candidate is rejected."""
        diff = abs(total - amount)
        if diff < self.EXACT_TOLERANCE:
            return MatchSignal("amount_exact", self.WEIGHT_AMOUNT_EXACT, f"{amount} == {total}")
        if diff / max(total, Decimal("1")) < self.NEAR_RATIO:
            return MatchSignal(
                "amount_near", self.WEIGHT_AMOUNT_NEAR, f"{amount} within 1% of {total}"
            )
        return None

    def _score_reference(
        self, reference: str | None, invoice_number: str | None
    ) -> MatchSignal | None:
        """Score payment reference against the invoice number."""
        ref = (reference or "").strip()
        number = (invoice_number or "").strip()
        if not ref or not number:
            return None

        if ref in number or number in ref:
            return MatchSignal("reference", self.WEIGHT_REFERENCE, f"{ref} ~ {number}")

        ref_digits = _NON_DIGITS.sub("", ref)
        number_digits = _NON_DIGITS.sub("", number)
        if (
            len(ref_digits) >= self.MIN_REFERENCE_DIGITS
            and len(number_digits) >= self.MIN_REFERENCE_DIGITS
            and (ref_digits in number_digits or number_digits in ref_digits)
        ):
            return MatchSignal(
                "reference_digits",
                self.WEIGHT_REFERENCE_DIGITS,
                f"{ref_digits} ~ {number_digits}",
            )
        return None

    def _score_partner(self, partner: str | None, document_partner: str | None) -> MatchSignal | None:
        """Score counterparty name containment, case-insensitive."""
        name = (partner or "").lower()
        other = (document_partner or "").lower()
        if name and other and (name in other or other in name):
            return MatchSignal("partner", self.WEIGHT_PARTNER, f"{partner} ~ {document_partner}")
        return None

    def _score_due_date(self, line_date: str | None, due_date: str | None) -> MatchSignal | None:
        """Score line date proximity to the document due date."""
        if not line_date or not due_date:
            return None
        try:
            delta = date.fromisoformat(line_date[:10]) - date.fromisoformat(due_date[:10])
        except ValueError:
            return None
        days = abs(delta.days)
        if days <= self.config.date_window_days:
            return MatchSignal("due_date", self.WEIGHT_DUE_DATE, f"{days} days from due date")
        return None
