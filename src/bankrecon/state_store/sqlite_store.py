"""
SQLite-based state store implementation.

Tables:
- document_imports: Uploaded statement files, deduplicated per tenant by hash
- bank_accounts: Tenant bank accounts (IBAN / account number lookup)
- bank_statements: Parsed statements with opening/closing balance
- statement_lines: Individual transactions and their match lifecycle
- invoices / supplier_invoices: Open items candidate for matching
- journal_entries / journal_lines: Locally written double-entry postings
- posting_rules / posting_rule_lines: Tenant posting templates (migration 001)
- statement_line_allocations: Partial payment shares per document (migration 004)

Every query is scoped by tenant_id.
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

from ..schemas.hashing import is_valid_file_hash
from ..schemas.journal import JournalLine
from ..schemas.models import (
    OPEN_INVOICE_STATUSES,
    OPEN_SUPPLIER_INVOICE_STATUSES,
    POSTABLE_STATUSES,
    Direction,
    DocumentType,
    ImportFormat,
    ImportStatus,
    MatchStatus,
    ParsedLine,
    StatementStatus,
)

logger = logging.getLogger(__name__)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _decimal(value: str | None) -> Decimal | None:
    return Decimal(value) if value is not None else None


# document type -> (table, partner column, open statuses, line column)
_DOCUMENT_TABLES = {
    DocumentType.INVOICE: (
        "invoices",
        "partner_name",
        OPEN_INVOICE_STATUSES,
        "matched_invoice_id",
    ),
    DocumentType.SUPPLIER_INVOICE: (
        "supplier_invoices",
        "supplier_name",
        OPEN_SUPPLIER_INVOICE_STATUSES,
        "matched_supplier_invoice_id",
    ),
}

# Import states that mark the end of a parse attempt
_TERMINAL_IMPORT_STATES = (ImportStatus.PARSED, ImportStatus.ERROR, ImportStatus.QUARANTINE)


@dataclass
class DocumentImportRecord:
    """Record of an uploaded statement file."""

    id: int
    tenant_id: str
    original_filename: str
    file_format: ImportFormat
    file_size_bytes: int
    sha256_hash: str
    status: ImportStatus
    bank_account_id: int | None
    parser_used: str | None
    transactions_count: int
    error_message: str | None
    statement_id: int | None
    imported_at: str
    processed_at: str | None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "DocumentImportRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            original_filename=row["original_filename"],
            file_format=ImportFormat(row["file_format"]),
            file_size_bytes=row["file_size_bytes"],
            sha256_hash=row["sha256_hash"],
            status=ImportStatus(row["status"]),
            bank_account_id=row["bank_account_id"],
            parser_used=row["parser_used"],
            transactions_count=row["transactions_count"],
            error_message=row["error_message"],
            statement_id=row["statement_id"],
            imported_at=row["imported_at"],
            processed_at=row["processed_at"],
        )


@dataclass
class BankAccountRecord:
    """Tenant bank account."""

    id: int
    tenant_id: str
    bank_name: str
    account_number: str
    iban: str | None
    currency: str
    gl_account_code: str | None
    is_active: bool

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "BankAccountRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            bank_name=row["bank_name"],
            account_number=row["account_number"],
            iban=row["iban"],
            currency=row["currency"],
            gl_account_code=row["gl_account_code"],
            is_active=bool(row["is_active"]),
        )


@dataclass
class StatementRecord:
    """Bank statement header."""

    id: int
    tenant_id: str
    bank_account_id: int
    statement_date: str
    statement_number: str | None
    currency: str
    opening_balance: Decimal | None
    closing_balance: Decimal
    status: StatementStatus
    document_import_id: int | None
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StatementRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            bank_account_id=row["bank_account_id"],
            statement_date=row["statement_date"],
            statement_number=row["statement_number"],
            currency=row["currency"],
            opening_balance=_decimal(row["opening_balance"]),
            closing_balance=Decimal(row["closing_balance"]),
            status=StatementStatus(row["status"]),
            document_import_id=row["document_import_id"],
            created_at=row["created_at"],
        )


@dataclass
class StatementLineRecord:
    """Single statement line with its match and posting state."""

    id: int
    tenant_id: str
    statement_id: int
    line_date: str
    amount: Decimal
    direction: Direction
    match_status: MatchStatus
    description: str | None = None
    value_date: str | None = None
    partner_name: str | None = None
    partner_account: str | None = None
    counterparty_iban: str | None = None
    payment_reference: str | None = None
    payment_purpose: str | None = None
    transaction_type: str | None = None
    match_confidence: int | None = None
    matched_invoice_id: int | None = None
    matched_supplier_invoice_id: int | None = None
    journal_entry_id: int | None = None
    posting_claim: str | None = None
    created_at: str = ""

    @property
    def is_posted(self) -> bool:
        return self.journal_entry_id is not None

    @property
    def matched_document(self) -> tuple[DocumentType, int] | None:
        """The (document type, id) this line is matched to, if any."""
        if self.matched_invoice_id is not None:
            return DocumentType.INVOICE, self.matched_invoice_id
        if self.matched_supplier_invoice_id is not None:
            return DocumentType.SUPPLIER_INVOICE, self.matched_supplier_invoice_id
        return None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "StatementLineRecord":
        """Create from database row."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            statement_id=row["statement_id"],
            line_date=row["line_date"],
            amount=Decimal(row["amount"]),
            direction=Direction(row["direction"]),
            match_status=MatchStatus(row["match_status"]),
            description=row["description"],
            value_date=row["value_date"],
            partner_name=row["partner_name"],
            partner_account=row["partner_account"],
            counterparty_iban=row["counterparty_iban"],
            payment_reference=row["payment_reference"],
            payment_purpose=row["payment_purpose"],
            transaction_type=row["transaction_type"],
            match_confidence=row["match_confidence"],
            matched_invoice_id=row["matched_invoice_id"],
            matched_supplier_invoice_id=row["matched_supplier_invoice_id"],
            journal_entry_id=row["journal_entry_id"],
            posting_claim=row["posting_claim"],
            created_at=row["created_at"],
        )


@dataclass
class DocumentRecord:
    """Invoice or supplier invoice as seen by matching and posting."""

    id: int
    tenant_id: str
    document_type: DocumentType
    invoice_number: str
    total: Decimal
    partner_name: str | None
    due_date: str | None
    status: str
    amount_paid: Decimal = Decimal("0")

    @property
    def remaining(self) -> Decimal:
        """Part of the total not yet settled."""
        return self.total - self.amount_paid

    @classmethod
    def from_row(cls, row: sqlite3.Row, document_type: DocumentType) -> "DocumentRecord":
        """Create from database row (partner column aliased to partner_name)."""
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            document_type=document_type,
            invoice_number=row["invoice_number"],
            total=Decimal(row["total"]),
            partner_name=row["partner_name"],
            due_date=row["due_date"],
            status=row["status"],
            amount_paid=Decimal(row["amount_paid"]),
        )


@dataclass
class AllocationRecord:
    """Share of a statement line's amount applied to one document."""

    id: int
    tenant_id: str
    statement_line_id: int
    document_type: DocumentType
    document_id: int
    amount: Decimal
    created_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "AllocationRecord":
        """Create from database row."""
        if row["invoice_id"] is not None:
            document_type, document_id = DocumentType.INVOICE, row["invoice_id"]
        else:
            document_type, document_id = DocumentType.SUPPLIER_INVOICE, row["supplier_invoice_id"]
        return cls(
            id=row["id"],
            tenant_id=row["tenant_id"],
            statement_line_id=row["statement_line_id"],
            document_type=document_type,
            document_id=document_id,
            amount=Decimal(row["amount"]),
            created_at=row["created_at"],
        )


@dataclass
class PostingRuleLineRecord:
    """One line of a posting rule template."""

    side: str  # DEBIT / CREDIT
    account_source: str  # FIXED / DYNAMIC
    account_code: str | None
    dynamic_source: str | None
    amount_factor: Decimal
    description_template: str | None
    sort_order: int

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "PostingRuleLineRecord":
        """Create from database row."""
        return cls(
            side=row["side"],
            account_source=row["account_source"],
            account_code=row["account_code"],
            dynamic_source=row["dynamic_source"],
            amount_factor=Decimal(row["amount_factor"]),
            description_template=row["description_template"],
            sort_order=row["sort_order"],
        )


@dataclass
class PostingRuleRecord:
    """Tenant posting rule keyed by payment model code."""

    id: int
    tenant_id: str
    payment_model_code: str
    name: str
    is_active: bool
    lines: list[PostingRuleLineRecord] = field(default_factory=list)


@dataclass
class JournalEntryRecord:
    """Locally stored journal entry with its lines."""

    id: int
    tenant_id: str
    entry_date: str
    reference: str
    description: str
    created_at: str
    lines: list[JournalLine] = field(default_factory=list)


class StateStore:
    """
    SQLite-based state store for the reconciliation pipeline.

    Provides persistent tracking of:
    - Uploaded statement files (dedupe by content hash)
    - Statements and their lines
    - Match state and posting claims per line
    - Open items and journal entries of the surrounding ledger

    Concurrent writers are kept consistent by conditional UPDATEs;
    callers read rowcount to learn whether they won.
    """

    SCHEMA_VERSION = 1

    def __init__(self, db_path: Path | str, run_migrations: bool = True):
        """
        Initialize state store.

        Args:
            db_path: Path to SQLite database file
            run_migrations: Whether to run pending migrations (default True)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()
        if run_migrations:
            self._run_migrations()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection with row factory."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Context manager for database transactions."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._transaction() as conn:
            # Schema version tracking
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    bank_name TEXT NOT NULL,
                    account_number TEXT NOT NULL,
                    iban TEXT,
                    currency TEXT NOT NULL DEFAULT 'RSD',
                    gl_account_code TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL
                )
            """
            )

            # Uploaded files; never deleted
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS document_imports (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    original_filename TEXT NOT NULL,
                    file_format TEXT NOT NULL,
                    file_size_bytes INTEGER NOT NULL,
                    sha256_hash TEXT NOT NULL,
                    status TEXT NOT NULL,
                    bank_account_id INTEGER,
                    transactions_count INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    imported_at TEXT NOT NULL,
                    UNIQUE (tenant_id, sha256_hash),
                    FOREIGN KEY (bank_account_id) REFERENCES bank_accounts(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS bank_statements (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    bank_account_id INTEGER NOT NULL,
                    statement_date TEXT NOT NULL,
                    statement_number TEXT,
                    currency TEXT NOT NULL,
                    opening_balance TEXT,
                    closing_balance TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'imported',
                    document_import_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (bank_account_id) REFERENCES bank_accounts(id),
                    FOREIGN KEY (document_import_id) REFERENCES document_imports(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    invoice_number TEXT NOT NULL,
                    total TEXT NOT NULL,
                    partner_name TEXT,
                    due_date TEXT,
                    status TEXT NOT NULL DEFAULT 'draft'
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS supplier_invoices (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    invoice_number TEXT NOT NULL,
                    total TEXT NOT NULL,
                    supplier_name TEXT,
                    due_date TEXT,
                    status TEXT NOT NULL DEFAULT 'received'
                )
            """
            )

            # journal_entry_id may point at a remote ledger, so no FK
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS statement_lines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    statement_id INTEGER NOT NULL,
                    line_date TEXT NOT NULL,
                    description TEXT,
                    amount TEXT NOT NULL,
                    direction TEXT NOT NULL,
                    partner_name TEXT,
                    partner_account TEXT,
                    payment_reference TEXT,
                    payment_purpose TEXT,
                    match_status TEXT NOT NULL DEFAULT 'unmatched',
                    match_confidence INTEGER,
                    matched_invoice_id INTEGER,
                    matched_supplier_invoice_id INTEGER,
                    journal_entry_id INTEGER,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY (statement_id) REFERENCES bank_statements(id) ON DELETE CASCADE,
                    FOREIGN KEY (matched_invoice_id) REFERENCES invoices(id),
                    FOREIGN KEY (matched_supplier_invoice_id) REFERENCES supplier_invoices(id)
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS journal_entries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    tenant_id TEXT NOT NULL,
                    entry_date TEXT NOT NULL,
                    reference TEXT NOT NULL,
                    description TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
            """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS journal_lines (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    journal_entry_id INTEGER NOT NULL,
                    account_code TEXT NOT NULL,
                    debit TEXT NOT NULL,
                    credit TEXT NOT NULL,
                    description TEXT,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    FOREIGN KEY (journal_entry_id) REFERENCES journal_entries(id) ON DELETE CASCADE
                )
            """
            )

            # Create indexes
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_imports_tenant ON document_imports(tenant_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_statements_tenant ON bank_statements(tenant_id)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_lines_statement "
                "ON statement_lines(statement_id, match_status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_invoices_open ON invoices(tenant_id, status)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_supplier_invoices_open "
                "ON supplier_invoices(tenant_id, status)"
            )

            # Set schema version
            conn.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (self.SCHEMA_VERSION,)
            )

    def _run_migrations(self) -> None:
        """Run pending database migrations."""
        from .migrations import MigrationRunner

        conn = self._get_connection()
        try:
            runner = MigrationRunner(conn)
            runner.run_pending()
        finally:
            conn.close()

    # Import methods

    def find_import_by_hash(self, tenant_id: str, sha256_hash: str) -> DocumentImportRecord | None:
        """Look up an upload by content hash within a tenant."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM document_imports WHERE tenant_id = ? AND sha256_hash = ?",
                (tenant_id, sha256_hash),
            ).fetchone()
            return DocumentImportRecord.from_row(row) if row else None

    def create_import(
        self,
        tenant_id: str,
        original_filename: str,
        file_format: ImportFormat,
        file_size_bytes: int,
        sha256_hash: str,
        bank_account_id: int | None = None,
        status: ImportStatus = ImportStatus.PENDING,
    ) -> int:
        """
        Create an import record. Returns the import ID.

        Raises:
            ValueError: If sha256_hash is not a hex SHA256 digest
            sqlite3.IntegrityError: If the tenant already uploaded this hash
                or bank_account_id does not exist
        """
        if not is_valid_file_hash(sha256_hash):
            raise ValueError(f"Invalid file hash: {sha256_hash!r}")

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO document_imports
                (tenant_id, original_filename, file_format, file_size_bytes, sha256_hash,
                 status, bank_account_id, imported_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    tenant_id,
                    original_filename,
                    file_format.value,
                    file_size_bytes,
                    sha256_hash,
                    status.value,
                    bank_account_id,
                    _utc_now(),
                ),
            )
            return cursor.lastrowid or 0

    def update_import_status(
        self,
        tenant_id: str,
        import_id: int,
        status: ImportStatus,
        error_message: str | None = None,
        transactions_count: int | None = None,
        parser_used: str | None = None,
        statement_id: int | None = None,
        bank_account_id: int | None = None,
    ) -> bool:
        """Update an import record. Unset optional fields keep their value.

        Returns:
            True if updated, False if the import was not found.
        """
        updates = ["status = ?", "error_message = ?"]
        params: list = [status.value, error_message]

        if transactions_count is not None:
            updates.append("transactions_count = ?")
            params.append(transactions_count)
        if parser_used is not None:
            updates.append("parser_used = ?")
            params.append(parser_used)
        if statement_id is not None:
            updates.append("statement_id = ?")
            params.append(statement_id)
        if bank_account_id is not None:
            updates.append("bank_account_id = ?")
            params.append(bank_account_id)
        if status in _TERMINAL_IMPORT_STATES:
            updates.append("processed_at = ?")
            params.append(_utc_now())

        params.extend([import_id, tenant_id])

        with self._transaction() as conn:
            cursor = conn.execute(
                f"UPDATE document_imports SET {', '.join(updates)} WHERE id = ? AND tenant_id = ?",
                params,
            )
            return cursor.rowcount > 0

    def get_import(self, tenant_id: str, import_id: int) -> DocumentImportRecord | None:
        """Get an import record by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM document_imports WHERE id = ? AND tenant_id = ?",
                (import_id, tenant_id),
            ).fetchone()
            return DocumentImportRecord.from_row(row) if row else None

    def list_imports(
        self, tenant_id: str, status: ImportStatus | None = None
    ) -> list[DocumentImportRecord]:
        """List a tenant's uploads, newest first."""
        query = "SELECT * FROM document_imports WHERE tenant_id = ?"
        params: list = [tenant_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY id DESC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [DocumentImportRecord.from_row(row) for row in rows]

    # Bank account methods

    def create_bank_account(
        self,
        tenant_id: str,
        bank_name: str,
        account_number: str,
        iban: str | None = None,
        currency: str = "RSD",
        gl_account_code: str | None = None,
        is_active: bool = True,
    ) -> int:
        """Create a bank account. Returns the account ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO bank_accounts
                (tenant_id, bank_name, account_number, iban, currency, gl_account_code,
                 is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    tenant_id,
                    bank_name,
                    account_number,
                    iban,
                    currency,
                    gl_account_code,
                    int(is_active),
                    _utc_now(),
                ),
            )
            return cursor.lastrowid or 0

    def get_bank_account(self, tenant_id: str, bank_account_id: int) -> BankAccountRecord | None:
        """Get a bank account by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bank_accounts WHERE id = ? AND tenant_id = ?",
                (bank_account_id, tenant_id),
            ).fetchone()
            return BankAccountRecord.from_row(row) if row else None

    def find_bank_account_by_iban(self, tenant_id: str, iban: str) -> BankAccountRecord | None:
        """Find an active bank account by IBAN."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM bank_accounts
                WHERE tenant_id = ? AND iban = ? AND is_active = 1
                ORDER BY id LIMIT 1
            """,
                (tenant_id, iban),
            ).fetchone()
            return BankAccountRecord.from_row(row) if row else None

    def find_bank_account_by_number(
        self, tenant_id: str, account_number: str
    ) -> BankAccountRecord | None:
        """Find an active bank account by domestic account number."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM bank_accounts
                WHERE tenant_id = ? AND account_number = ? AND is_active = 1
                ORDER BY id LIMIT 1
            """,
                (tenant_id, account_number),
            ).fetchone()
            return BankAccountRecord.from_row(row) if row else None

    # Statement methods

    def create_statement_with_lines(
        self,
        tenant_id: str,
        bank_account_id: int,
        statement_date: str,
        currency: str,
        closing_balance: Decimal,
        lines: list[ParsedLine],
        statement_number: str | None = None,
        opening_balance: Decimal | None = None,
        document_import_id: int | None = None,
    ) -> int:
        """
        Create a statement and all of its lines in one transaction.

        Lines are stored unmatched. Either everything is written or nothing.

        Returns:
            The statement ID
        """
        now = _utc_now()

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO bank_statements
                (tenant_id, bank_account_id, statement_date, statement_number, currency,
                 opening_balance, closing_balance, status, document_import_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                (
                    tenant_id,
                    bank_account_id,
                    statement_date,
                    statement_number,
                    currency,
                    str(opening_balance) if opening_balance is not None else None,
                    str(closing_balance),
                    StatementStatus.IMPORTED.value,
                    document_import_id,
                    now,
                ),
            )
            statement_id = cursor.lastrowid or 0

            conn.executemany(
                """
                INSERT INTO statement_lines
                (tenant_id, statement_id, line_date, value_date, description, amount, direction,
                 partner_name, partner_account, counterparty_iban, payment_reference,
                 payment_purpose, transaction_type, match_status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        tenant_id,
                        statement_id,
                        line.line_date,
                        line.value_date,
                        line.description,
                        str(line.amount),
                        line.direction.value,
                        line.partner_name,
                        line.partner_account,
                        line.counterparty_iban,
                        line.payment_reference,
                        line.payment_purpose,
                        line.transaction_type,
                        MatchStatus.UNMATCHED.value,
                        now,
                    )
                    for line in lines
                ],
            )

        logger.info(
            f"Created statement {statement_id} with {len(lines)} lines for tenant {tenant_id}"
        )
        return statement_id

    def get_statement(self, tenant_id: str, statement_id: int) -> StatementRecord | None:
        """Get a statement by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM bank_statements WHERE id = ? AND tenant_id = ?",
                (statement_id, tenant_id),
            ).fetchone()
            return StatementRecord.from_row(row) if row else None

    def list_statements(self, tenant_id: str) -> list[StatementRecord]:
        """List a tenant's statements, newest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM bank_statements WHERE tenant_id = ? "
                "ORDER BY statement_date DESC, id DESC",
                (tenant_id,),
            ).fetchall()
            return [StatementRecord.from_row(row) for row in rows]

    def update_statement_status(
        self, tenant_id: str, statement_id: int, status: StatementStatus
    ) -> bool:
        """Set statement status. Returns True if the statement exists."""
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE bank_statements SET status = ? WHERE id = ? AND tenant_id = ?",
                (status.value, statement_id, tenant_id),
            )
            return cursor.rowcount > 0

    # Statement line methods

    def get_statement_lines(
        self,
        tenant_id: str,
        statement_id: int,
        match_status: MatchStatus | None = None,
    ) -> list[StatementLineRecord]:
        """Get lines of a statement ordered by line date, then id."""
        query = "SELECT * FROM statement_lines WHERE tenant_id = ? AND statement_id = ?"
        params: list = [tenant_id, statement_id]
        if match_status is not None:
            query += " AND match_status = ?"
            params.append(match_status.value)
        query += " ORDER BY line_date ASC, id ASC"

        with self._transaction() as conn:
            rows = conn.execute(query, params).fetchall()
            return [StatementLineRecord.from_row(row) for row in rows]

    def get_statement_line(self, tenant_id: str, line_id: int) -> StatementLineRecord | None:
        """Get a single statement line by ID."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM statement_lines WHERE id = ? AND tenant_id = ?",
                (line_id, tenant_id),
            ).fetchone()
            return StatementLineRecord.from_row(row) if row else None

    def set_auto_match(
        self,
        tenant_id: str,
        line_id: int,
        match_status: MatchStatus,
        confidence: int,
        document_type: DocumentType,
        document_id: int,
    ) -> bool:
        """
        Record an automatic match on a line that is still unmatched.

        Returns:
            False if the line moved out of 'unmatched' meanwhile.
        """
        column = _DOCUMENT_TABLES[document_type][3]
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE statement_lines
                SET match_status = ?, match_confidence = ?, {column} = ?
                WHERE id = ? AND tenant_id = ? AND match_status = ?
                  AND journal_entry_id IS NULL
            """,
                (
                    match_status.value,
                    confidence,
                    document_id,
                    line_id,
                    tenant_id,
                    MatchStatus.UNMATCHED.value,
                ),
            )
            return cursor.rowcount > 0

    def set_manual_match(
        self,
        tenant_id: str,
        line_id: int,
        document_type: DocumentType,
        document_id: int,
    ) -> bool:
        """
        Operator match: set the document for its type and clear the other one.

        Returns:
            False if the line is posted, being posted, or not found.
        """
        invoice_id = document_id if document_type == DocumentType.INVOICE else None
        supplier_invoice_id = document_id if document_type == DocumentType.SUPPLIER_INVOICE else None

        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE statement_lines
                SET match_status = ?, match_confidence = NULL,
                    matched_invoice_id = ?, matched_supplier_invoice_id = ?
                WHERE id = ? AND tenant_id = ?
                  AND journal_entry_id IS NULL AND posting_claim IS NULL
                  AND NOT EXISTS (
                      SELECT 1 FROM statement_line_allocations a
                      WHERE a.statement_line_id = statement_lines.id
                  )
            """,
                (
                    MatchStatus.MANUALLY_MATCHED.value,
                    invoice_id,
                    supplier_invoice_id,
                    line_id,
                    tenant_id,
                ),
            )
            return cursor.rowcount > 0

    def confirm_suggested(self, tenant_id: str, statement_id: int) -> int:
        """Promote every suggested line of a statement to matched. Returns count."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE statement_lines
                SET match_status = ?
                WHERE tenant_id = ? AND statement_id = ? AND match_status = ?
            """,
                (
                    MatchStatus.MATCHED.value,
                    tenant_id,
                    statement_id,
                    MatchStatus.SUGGESTED.value,
                ),
            )
            return cursor.rowcount

    def exclude_line(self, tenant_id: str, line_id: int) -> bool:
        """Mark a line excluded unless it is posted, being posted or allocated."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE statement_lines
                SET match_status = ?
                WHERE id = ? AND tenant_id = ?
                  AND journal_entry_id IS NULL AND posting_claim IS NULL
                  AND NOT EXISTS (
                      SELECT 1 FROM statement_line_allocations a
                      WHERE a.statement_line_id = statement_lines.id
                  )
            """,
                (MatchStatus.EXCLUDED.value, line_id, tenant_id),
            )
            return cursor.rowcount > 0

    def claim_line_for_posting(self, tenant_id: str, line_id: int, claim_token: str) -> bool:
        """
        Atomically claim an unposted line for posting.

        Exactly one concurrent caller wins the claim, and only while the
        line is matched, manually matched or unmatched.
        """
        postable = [s.value for s in (*POSTABLE_STATUSES, MatchStatus.UNMATCHED)]
        placeholders = ", ".join("?" for _ in postable)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE statement_lines
                SET posting_claim = ?
                WHERE id = ? AND tenant_id = ?
                  AND journal_entry_id IS NULL AND posting_claim IS NULL
                  AND match_status IN ({placeholders})
            """,
                (claim_token, line_id, tenant_id, *postable),
            )
            return cursor.rowcount > 0

    def release_posting_claim(self, tenant_id: str, line_id: int, claim_token: str) -> bool:
        """Release a claim after a failed posting attempt."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE statement_lines
                SET posting_claim = NULL
                WHERE id = ? AND tenant_id = ? AND posting_claim = ?
                  AND journal_entry_id IS NULL
            """,
                (line_id, tenant_id, claim_token),
            )
            return cursor.rowcount > 0

    def finalize_posting(
        self,
        tenant_id: str,
        line_id: int,
        claim_token: str,
        journal_entry_id: int,
        document: tuple[DocumentType, int] | None = None,
    ) -> bool:
        """
        Attach the journal entry to the line and mark its document paid.

        Both writes happen in one transaction; the document is only touched
        when the line update wins.

        Returns:
            False if the claim token no longer holds the line.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE statement_lines
                SET journal_entry_id = ?, posting_claim = NULL
                WHERE id = ? AND tenant_id = ? AND posting_claim = ?
                  AND journal_entry_id IS NULL
            """,
                (journal_entry_id, line_id, tenant_id, claim_token),
            )
            if cursor.rowcount == 0:
                return False

            if document is not None:
                document_type, document_id = document
                table = _DOCUMENT_TABLES[document_type][0]
                conn.execute(
                    f"UPDATE {table} SET status = 'paid', amount_paid = total "
                    "WHERE id = ? AND tenant_id = ? AND status != 'paid'",
                    (document_id, tenant_id),
                )
            return True

    # Invoice / supplier invoice methods

    def create_invoice(
        self,
        tenant_id: str,
        invoice_number: str,
        total: Decimal,
        partner_name: str | None = None,
        due_date: str | None = None,
        status: str = "sent",
    ) -> int:
        """Create a customer invoice. Returns the invoice ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO invoices
                (tenant_id, invoice_number, total, partner_name, due_date, status)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (tenant_id, invoice_number, str(total), partner_name, due_date, status),
            )
            return cursor.lastrowid or 0

    def create_supplier_invoice(
        self,
        tenant_id: str,
        invoice_number: str,
        total: Decimal,
        supplier_name: str | None = None,
        due_date: str | None = None,
        status: str = "received",
    ) -> int:
        """Create a supplier invoice. Returns the supplier invoice ID."""
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO supplier_invoices
                (tenant_id, invoice_number, total, supplier_name, due_date, status)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                (tenant_id, invoice_number, str(total), supplier_name, due_date, status),
            )
            return cursor.lastrowid or 0

    def get_document(
        self, tenant_id: str, document_type: DocumentType, document_id: int
    ) -> DocumentRecord | None:
        """Get an invoice or supplier invoice by ID."""
        table, partner_column, _, _ = _DOCUMENT_TABLES[document_type]
        with self._transaction() as conn:
            row = conn.execute(
                f"SELECT *, {partner_column} AS partner_name FROM {table} "
                "WHERE id = ? AND tenant_id = ?",
                (document_id, tenant_id),
            ).fetchone()
            return DocumentRecord.from_row(row, document_type) if row else None

    def get_open_documents(
        self, tenant_id: str, document_type: DocumentType
    ) -> list[DocumentRecord]:
        """Get documents open for matching, ordered by ID."""
        table, partner_column, open_statuses, _ = _DOCUMENT_TABLES[document_type]
        placeholders = ", ".join("?" for _ in open_statuses)
        with self._transaction() as conn:
            rows = conn.execute(
                f"SELECT *, {partner_column} AS partner_name FROM {table} "
                f"WHERE tenant_id = ? AND status IN ({placeholders}) ORDER BY id ASC",
                (tenant_id, *(s.value for s in open_statuses)),
            ).fetchall()
            return [DocumentRecord.from_row(row, document_type) for row in rows]

    # Allocation methods

    def get_line_allocations(self, tenant_id: str, line_id: int) -> list[AllocationRecord]:
        """Allocations of a line, oldest first."""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT * FROM statement_line_allocations "
                "WHERE tenant_id = ? AND statement_line_id = ? ORDER BY id ASC",
                (tenant_id, line_id),
            ).fetchall()
            return [AllocationRecord.from_row(row) for row in rows]

    def allocate_line(
        self,
        tenant_id: str,
        line_id: int,
        document_type: DocumentType,
        allocations: list[tuple[int, Decimal]],
    ) -> MatchStatus | None:
        """
        Apply shares of a line's amount to open documents in one transaction.

        Each document gets amount_paid raised by its share and becomes
        'paid' once fully settled, 'partially_paid' otherwise. The line
        becomes manually_matched when its whole amount is allocated and
        'partial' otherwise.

        Returns:
            The line's new match status, or None (nothing written) when the
            line is posted, claimed, excluded or matched to a single
            document, a document is not open, or a share exceeds what is
            left on the line or the document.
        """
        table, _, open_statuses, _ = _DOCUMENT_TABLES[document_type]
        document_column = (
            "invoice_id" if document_type == DocumentType.INVOICE else "supplier_invoice_id"
        )
        allocatable = (
            MatchStatus.UNMATCHED.value,
            MatchStatus.SUGGESTED.value,
            MatchStatus.PARTIALLY_MATCHED.value,
        )
        open_values = {s.value for s in open_statuses}

        with self._transaction() as conn:
            # Hold the write lock while balances are read and updated
            conn.execute("BEGIN IMMEDIATE")
            line = conn.execute(
                "SELECT * FROM statement_lines WHERE id = ? AND tenant_id = ?",
                (line_id, tenant_id),
            ).fetchone()
            if (
                line is None
                or line["journal_entry_id"] is not None
                or line["posting_claim"] is not None
                or line["match_status"] not in allocatable
            ):
                return None

            allocated = sum(
                (
                    Decimal(row["amount"])
                    for row in conn.execute(
                        "SELECT amount FROM statement_line_allocations "
                        "WHERE tenant_id = ? AND statement_line_id = ?",
                        (tenant_id, line_id),
                    )
                ),
                Decimal("0"),
            )
            allocated += sum((amount for _, amount in allocations), Decimal("0"))
            line_amount = Decimal(line["amount"])
            if allocated > line_amount:
                return None

            now = _utc_now()
            for document_id, amount in allocations:
                document = conn.execute(
                    f"SELECT total, amount_paid, status FROM {table} WHERE id = ? AND tenant_id = ?",
                    (document_id, tenant_id),
                ).fetchone()
                if document is None or document["status"] not in open_values:
                    conn.rollback()
                    return None

                total = Decimal(document["total"])
                paid = Decimal(document["amount_paid"]) + amount
                if amount <= 0 or paid > total:
                    conn.rollback()
                    return None

                conn.execute(
                    f"UPDATE {table} SET amount_paid = ?, status = ? WHERE id = ? AND tenant_id = ?",
                    (
                        str(paid),
                        "paid" if paid == total else "partially_paid",
                        document_id,
                        tenant_id,
                    ),
                )
                conn.execute(
                    f"""
                    INSERT INTO statement_line_allocations
                    (tenant_id, statement_line_id, {document_column}, amount, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """,
                    (tenant_id, line_id, document_id, str(amount), now),
                )

            status = (
                MatchStatus.MANUALLY_MATCHED
                if allocated == line_amount
                else MatchStatus.PARTIALLY_MATCHED
            )
            conn.execute(
                """
                UPDATE statement_lines
                SET match_status = ?, match_confidence = NULL,
                    matched_invoice_id = NULL, matched_supplier_invoice_id = NULL
                WHERE id = ? AND tenant_id = ?
            """,
                (status.value, line_id, tenant_id),
            )
            return status

    # Posting rule methods

    def create_posting_rule(
        self,
        tenant_id: str,
        payment_model_code: str,
        name: str,
        lines: list[dict],
        is_active: bool = True,
    ) -> int:
        """
        Create a posting rule with its lines. Returns the rule ID.

        Each line dict carries side, account_source, and optionally
        account_code, dynamic_source, amount_factor, description_template.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO posting_rules
                (tenant_id, payment_model_code, name, is_active, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (tenant_id, payment_model_code, name, int(is_active), _utc_now()),
            )
            rule_id = cursor.lastrowid or 0

            conn.executemany(
                """
                INSERT INTO posting_rule_lines
                (posting_rule_id, side, account_source, account_code, dynamic_source,
                 amount_factor, description_template, sort_order)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        rule_id,
                        line["side"],
                        line.get("account_source", "FIXED"),
                        line.get("account_code"),
                        line.get("dynamic_source"),
                        str(line.get("amount_factor", "1")),
                        line.get("description_template"),
                        line.get("sort_order", i),
                    )
                    for i, line in enumerate(lines)
                ],
            )
            return rule_id

    def get_posting_rule(self, tenant_id: str, payment_model_code: str) -> PostingRuleRecord | None:
        """Get the active posting rule for a payment model, with ordered lines."""
        with self._transaction() as conn:
            row = conn.execute(
                """
                SELECT * FROM posting_rules
                WHERE tenant_id = ? AND payment_model_code = ? AND is_active = 1
                ORDER BY id DESC LIMIT 1
            """,
                (tenant_id, payment_model_code),
            ).fetchone()
            if not row:
                return None

            line_rows = conn.execute(
                "SELECT * FROM posting_rule_lines WHERE posting_rule_id = ? "
                "ORDER BY sort_order ASC, id ASC",
                (row["id"],),
            ).fetchall()

            return PostingRuleRecord(
                id=row["id"],
                tenant_id=row["tenant_id"],
                payment_model_code=row["payment_model_code"],
                name=row["name"],
                is_active=bool(row["is_active"]),
                lines=[PostingRuleLineRecord.from_row(r) for r in line_rows],
            )

    # Journal methods

    def create_journal_entry(
        self,
        tenant_id: str,
        entry_date: str,
        reference: str,
        description: str,
        lines: list[JournalLine],
    ) -> int:
        """Store a journal entry and its lines. Returns the entry ID.

        Balance is not checked here; callers validate before writing.
        """
        with self._transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO journal_entries
                (tenant_id, entry_date, reference, description, created_at)
                VALUES (?, ?, ?, ?, ?)
            """,
                (tenant_id, entry_date, reference, description, _utc_now()),
            )
            entry_id = cursor.lastrowid or 0

            conn.executemany(
                """
                INSERT INTO journal_lines
                (journal_entry_id, account_code, debit, credit, description, sort_order)
                VALUES (?, ?, ?, ?, ?, ?)
            """,
                [
                    (
                        entry_id,
                        line.account_code,
                        str(line.debit),
                        str(line.credit),
                        line.description,
                        line.sort_order,
                    )
                    for line in lines
                ],
            )
            return entry_id

    def get_journal_entry(self, tenant_id: str, entry_id: int) -> JournalEntryRecord | None:
        """Get a journal entry with its lines."""
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM journal_entries WHERE id = ? AND tenant_id = ?",
                (entry_id, tenant_id),
            ).fetchone()
            if not row:
                return None

            line_rows = conn.execute(
                "SELECT * FROM journal_lines WHERE journal_entry_id = ? "
                "ORDER BY sort_order ASC, id ASC",
                (entry_id,),
            ).fetchall()

            return JournalEntryRecord(
                id=row["id"],
                tenant_id=row["tenant_id"],
                entry_date=row["entry_date"],
                reference=row["reference"],
                description=row["description"],
                created_at=row["created_at"],
                lines=[
                    JournalLine(
                        account_code=r["account_code"],
                        debit=Decimal(r["debit"]),
                        credit=Decimal(r["credit"]),
                        description=r["description"] or "",
                        sort_order=r["sort_order"],
                    )
                    for r in line_rows
                ],
            )

    def get_line_status_counts(self, tenant_id: str, statement_id: int) -> dict[str, int]:
        """Count lines per match status, plus a 'posted' total."""
        with self._transaction() as conn:
            rows = conn.execute(
                """
                SELECT match_status, COUNT(*) AS n,
                       SUM(CASE WHEN journal_entry_id IS NOT NULL THEN 1 ELSE 0 END) AS posted
                FROM statement_lines
                WHERE tenant_id = ? AND statement_id = ?
                GROUP BY match_status
            """,
                (tenant_id, statement_id),
            ).fetchall()

        counts = {status.value: 0 for status in MatchStatus}
        posted = 0
        for row in rows:
            counts[row["match_status"]] = row["n"]
            posted += row["posted"] or 0
        counts["posted"] = posted
        return counts
