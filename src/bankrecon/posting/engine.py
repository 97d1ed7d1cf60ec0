"""
Posting engine.

Posts reconciled statement lines as journal entries and marks the matched
documents paid. A line is posted at most once:

1. claim the line (conditional UPDATE on posting_claim)
2. create the journal entry through the configured writer
3. attach the entry and mark the document paid in one transaction

A failure in step 2 releases the claim so the line can be retried.
"""

import logging
import uuid
from dataclasses import dataclass, field

from ..config import PostingConfig
from ..schemas.journal import ImbalancedPostingError
from ..schemas.models import POSTABLE_STATUSES, Direction, ErrorCode, MatchStatus, StatementStatus
from ..state_store import StateStore, StatementLineRecord
from .journal import JournalWriter
from .rules import PostingContext, resolve_posting_lines

logger = logging.getLogger(__name__)

JOURNAL_REFERENCE_PREFIX = "BS-"


@dataclass
class PostingResult:
    """Result of posting a single line."""

    success: bool
    line_id: int
    journal_entry_id: int | None = None
    error_code: ErrorCode | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "line_id": self.line_id,
            "journal_entry_id": self.journal_entry_id,
            "error_code": self.error_code.value if self.error_code else None,
            "message": self.message,
        }


@dataclass
class BatchPostingResult:
    """Result of posting every matched line of a statement."""

    statement_id: int
    posted: int = 0
    failures: list[PostingResult] = field(default_factory=list)
    status: StatementStatus | None = None
    error_code: ErrorCode | None = None

    @property
    def success(self) -> bool:
        return self.error_code is None and not self.failures

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "statement_id": self.statement_id,
            "posted": self.posted,
            "failures": [f.to_dict() for f in self.failures],
            "status": self.status.value if self.status else None,
            "error_code": self.error_code.value if self.error_code else None,
        }


class PostingEngine:
    """
    Creates journal entries for statement lines.

    Responsibilities:
    - Pick the payment model and resolve rule-or-fallback lines
    - Guard against double posting
    - Mark matched documents paid
    - Advance the statement status after a batch
    """

    def __init__(
        self,
        store: StateStore,
        writer: JournalWriter,
        config: PostingConfig | None = None,
    ):
        """
        Initialize posting engine.

        Args:
            store: State store
            writer: Journal writer (local store or remote ledger)
            config: Account codes, payment models and reconcile mode
        """
        self.store = store
        self.writer = writer
        self.config = config or PostingConfig()

    def post_line(
        self,
        tenant_id: str,
        line_id: int,
        payment_model_code: str | None = None,
    ) -> PostingResult:
        """
        Post one statement line.

        Unmatched lines may be posted too; they get a journal entry but no
        document is marked paid.

        Returns:
            PostingResult. Expected refusals are returned with an error code.

        Raises:
            ImbalancedPostingError: The resolved lines do not balance
            LedgerError: The remote ledger failed
        """
        line = self.store.get_statement_line(tenant_id, line_id)
        if line is None:
            return self._failed(line_id, ErrorCode.LINE_NOT_FOUND, "Line not found")
        if line.is_posted:
            return self._failed(
                line_id,
                ErrorCode.ALREADY_POSTED,
                f"Line already posted as journal entry {line.journal_entry_id}",
            )
        if line.match_status not in (*POSTABLE_STATUSES, MatchStatus.UNMATCHED):
            return self._failed(
                line_id,
                ErrorCode.INVALID_STATE,
                f"Lines in state '{line.match_status.value}' cannot be posted",
            )

        claim_token = uuid.uuid4().hex
        if not self.store.claim_line_for_posting(tenant_id, line_id, claim_token):
            current = self.store.get_statement_line(tenant_id, line_id)
            if current is not None and current.match_status != line.match_status:
                return self._failed(
                    line_id,
                    ErrorCode.INVALID_STATE,
                    f"Line moved to state '{current.match_status.value}' before posting",
                )
            return self._failed(
                line_id, ErrorCode.ALREADY_POSTED, "Line is being posted by another caller"
            )

        # The claim freezes the line; post what it holds now, not the earlier read
        try:
            line = self.store.get_statement_line(tenant_id, line_id)
            entry_id = self._write_entry(tenant_id, line, payment_model_code)
        except Exception:
            self.store.release_posting_claim(tenant_id, line_id, claim_token)
            raise

        if not self.store.finalize_posting(
            tenant_id, line_id, claim_token, entry_id, document=line.matched_document
        ):
            logger.error(
                f"Line {line_id} lost its posting claim; journal entry {entry_id} is not attached"
            )
            return self._failed(
                line_id,
                ErrorCode.ALREADY_POSTED,
                f"Posting claim lost, journal entry {entry_id} not attached",
            )

        logger.info(f"Posted line {line_id} as journal entry {entry_id}")
        return PostingResult(success=True, line_id=line_id, journal_entry_id=entry_id)

    def post_all_matched(
        self,
        tenant_id: str,
        statement_id: int,
        strict: bool | None = None,
    ) -> BatchPostingResult:
        """
        Post every matched or manually matched line of a statement.

        Failures are collected per line and do not stop the batch.

        Args:
            tenant_id: Owning tenant
            statement_id: Statement to post
            strict: Only mark reconciled when every non-excluded line is
                posted (defaults to posting.strict_reconcile)
        """
        result = BatchPostingResult(statement_id=statement_id)
        statement = self.store.get_statement(tenant_id, statement_id)
        if statement is None:
            result.error_code = ErrorCode.STATEMENT_NOT_FOUND
            return result

        strict = self.config.strict_reconcile if strict is None else strict
        lines = [
            line
            for line in self.store.get_statement_lines(tenant_id, statement_id)
            if line.match_status in POSTABLE_STATUSES and not line.is_posted
        ]

        for line in lines:
            try:
                posted = self.post_line(tenant_id, line.id)
            except ImbalancedPostingError as e:
                logger.error(f"Failed to post line {line.id}: {e}")
                posted = PostingResult(
                    success=False,
                    line_id=line.id,
                    error_code=ErrorCode.IMBALANCED_POSTING,
                    message=str(e),
                )
            except Exception as e:
                logger.error(f"Failed to post line {line.id}: {e}")
                posted = PostingResult(success=False, line_id=line.id, message=str(e))

            if posted.success:
                result.posted += 1
            else:
                result.failures.append(posted)

        result.status = self._advance_statement(tenant_id, statement_id, result.posted, strict)
        logger.info(
            f"Statement {statement_id}: posted {result.posted} of {len(lines)} lines "
            f"({len(result.failures)} failed)"
        )
        return result

    def _advance_statement(
        self, tenant_id: str, statement_id: int, posted: int, strict: bool
    ) -> StatementStatus | None:
        """Set the statement status after a batch. Returns the new status, if any."""
        if strict:
            remaining = [
                line
                for line in self.store.get_statement_lines(tenant_id, statement_id)
                if line.match_status != MatchStatus.EXCLUDED and not line.is_posted
            ]
            status = StatementStatus.RECONCILING if remaining else StatementStatus.RECONCILED
        elif posted > 0:
            status = StatementStatus.RECONCILED
        else:
            return None

        self.store.update_statement_status(tenant_id, statement_id, status)
        return status

    def _write_entry(
        self, tenant_id: str, line: StatementLineRecord, payment_model_code: str | None
    ) -> int:
        if payment_model_code is None:
            payment_model_code = (
                self.config.customer_payment_model
                if line.direction == Direction.CREDIT
                else self.config.vendor_payment_model
            )

        text = line.description or line.partner_name or ""
        context = PostingContext(
            bank_account_code=self._bank_account_code(tenant_id, line.statement_id),
            receivable_account_code=self.config.receivable_account_code,
            payable_account_code=self.config.payable_account_code,
            description=line.description or "",
            partner=line.partner_name or "",
            reference=line.payment_reference or "",
        )
        rule = self.store.get_posting_rule(tenant_id, payment_model_code)
        journal_lines = resolve_posting_lines(
            rule,
            line.direction,
            line.amount,
            context,
            description=self.config.description_prefix,
        )

        return self.writer.create_journal_entry(
            tenant_id=tenant_id,
            entry_date=line.line_date,
            lines=journal_lines,
            reference=f"{JOURNAL_REFERENCE_PREFIX}{line.payment_reference or line.id}",
            description=f"{self.config.description_prefix}: {text}",
        )

    def _bank_account_code(self, tenant_id: str, statement_id: int) -> str:
        """GL code of the statement's bank account, or the configured default."""
        statement = self.store.get_statement(tenant_id, statement_id)
        if statement is not None:
            account = self.store.get_bank_account(tenant_id, statement.bank_account_id)
            if account is not None and account.gl_account_code:
                return account.gl_account_code
        return self.config.bank_account_code

    @staticmethod
    def _failed(line_id: int, error_code: ErrorCode, message: str) -> PostingResult:
        logger.warning(f"Line {line_id} not posted: {message}")
        return PostingResult(
            success=False, line_id=line_id, error_code=error_code, message=message
        )
