"""
Canonical statement and reconciliation types (SSOT).

Every stage of the pipeline (ingestion, parsing, matching, review, posting)
exchanges these types. Enum values are the strings persisted in the state
store, so renaming a member is a schema change.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class ImportFormat(str, Enum):
    """File format of an uploaded statement, derived from its extension."""

    XML = "XML"
    CSV = "CSV"
    PDF = "PDF"
    UNKNOWN = "UNKNOWN"


class ImportStatus(str, Enum):
    """Lifecycle of a DocumentImport record."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PARSED = "PARSED"
    MATCHED = "MATCHED"
    ERROR = "ERROR"
    QUARANTINE = "QUARANTINE"  # Needs manual review


class StatementStatus(str, Enum):
    """Reconciliation status of a bank statement."""

    IMPORTED = "imported"
    RECONCILING = "reconciling"
    RECONCILED = "reconciled"


class Direction(str, Enum):
    """Direction of funds on a statement line."""

    CREDIT = "credit"  # Inbound
    DEBIT = "debit"  # Outbound


class MatchStatus(str, Enum):
    """Match lifecycle of a statement line.

    Posting is not a match status: a line is posted when its
    journal_entry_id is set.
    """

    UNMATCHED = "unmatched"
    SUGGESTED = "suggested"
    MATCHED = "matched"
    MANUALLY_MATCHED = "manually_matched"
    PARTIALLY_MATCHED = "partial"  # Allocated below the line amount
    EXCLUDED = "excluded"


# Lines in these states are eligible for batch posting
POSTABLE_STATUSES = (MatchStatus.MATCHED, MatchStatus.MANUALLY_MATCHED)


class DocumentType(str, Enum):
    """Kind of open item a line can be matched against."""

    INVOICE = "invoice"
    SUPPLIER_INVOICE = "supplier_invoice"

    @classmethod
    def for_direction(cls, direction: Direction) -> "DocumentType":
        """Credit lines settle receivables, debit lines settle payables."""
        return cls.INVOICE if direction == Direction.CREDIT else cls.SUPPLIER_INVOICE


class InvoiceStatus(str, Enum):
    """Status of a customer invoice (receivable)."""

    DRAFT = "draft"
    SENT = "sent"
    OVERDUE = "overdue"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class SupplierInvoiceStatus(str, Enum):
    """Status of a supplier invoice (payable)."""

    RECEIVED = "received"
    APPROVED = "approved"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


# Documents in these states are candidates for matching
OPEN_INVOICE_STATUSES = (InvoiceStatus.SENT, InvoiceStatus.OVERDUE, InvoiceStatus.PARTIALLY_PAID)
OPEN_SUPPLIER_INVOICE_STATUSES = (
    SupplierInvoiceStatus.RECEIVED,
    SupplierInvoiceStatus.APPROVED,
    SupplierInvoiceStatus.PARTIALLY_PAID,
)


class TransactionType(str, Enum):
    """Bank transaction classification carried by structured statements."""

    WIRE = "WIRE"
    FEE = "FEE"
    SALARY = "SALARY"
    TAX = "TAX"
    CARD = "CARD"


class ErrorCode(str, Enum):
    """Expected failure conditions reported in structured results."""

    DUPLICATE_FILE = "DUPLICATE_FILE"
    UNRECOGNIZED_FORMAT = "UNRECOGNIZED_FORMAT"
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    PARSE_ERROR = "PARSE_ERROR"
    UNKNOWN_XML_DIALECT = "UNKNOWN_XML_DIALECT"
    EMPTY_STATEMENT = "EMPTY_STATEMENT"
    MISSING_COLUMNS = "MISSING_COLUMNS"
    BANK_ACCOUNT_NOT_FOUND = "BANK_ACCOUNT_NOT_FOUND"
    STATEMENT_NOT_FOUND = "STATEMENT_NOT_FOUND"
    NO_CANDIDATE_DOCUMENT = "NO_CANDIDATE_DOCUMENT"
    LINE_NOT_FOUND = "LINE_NOT_FOUND"
    DOCUMENT_NOT_FOUND = "DOCUMENT_NOT_FOUND"
    DIRECTION_MISMATCH = "DIRECTION_MISMATCH"
    INVALID_STATE = "INVALID_STATE"
    OVER_ALLOCATION = "OVER_ALLOCATION"
    IMPORT_NOT_FOUND = "IMPORT_NOT_FOUND"
    ALREADY_POSTED = "ALREADY_POSTED"
    IMBALANCED_POSTING = "IMBALANCED_POSTING"


@dataclass
class ParsedLine:
    """One normalized bank transaction, ready to be stored as a statement line."""

    line_date: str  # YYYY-MM-DD
    amount: Decimal  # Non-negative magnitude
    direction: Direction
    description: str | None = None
    value_date: str | None = None
    partner_name: str | None = None
    partner_account: str | None = None
    counterparty_iban: str | None = None
    payment_reference: str | None = None
    payment_purpose: str | None = None
    transaction_type: str | None = None


@dataclass
class ParseResult:
    """Output of a statement parser.

    closing_balance prefers the balance stated by the bank (XML dialects)
    and falls back to total_credit - total_debit.
    """

    format_name: str
    lines: list[ParsedLine] = field(default_factory=list)
    iban: str | None = None
    statement_number: str | None = None
    opening_balance: Decimal | None = None
    stated_closing_balance: Decimal | None = None
    period_start: str | None = None
    period_end: str | None = None
    skipped_rows: int = 0

    @property
    def total_credit(self) -> Decimal:
        """Sum of inbound amounts."""
        return sum(
            (line.amount for line in self.lines if line.direction == Direction.CREDIT),
            Decimal("0"),
        )

    @property
    def total_debit(self) -> Decimal:
        """Sum of outbound amounts."""
        return sum(
            (line.amount for line in self.lines if line.direction == Direction.DEBIT),
            Decimal("0"),
        )

    @property
    def closing_balance(self) -> Decimal:
        if self.stated_closing_balance is not None:
            return self.stated_closing_balance
        return self.total_credit - self.total_debit

    @property
    def transaction_count(self) -> int:
        return len(self.lines)
