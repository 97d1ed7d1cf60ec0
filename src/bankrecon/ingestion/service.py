"""
Statement file ingestion.

Flow for an uploaded file:
1. SHA256 over raw bytes; a (tenant, hash) seen before is a duplicate
2. Format from the file extension
3. PENDING import record persisted before any parse attempt
4. XML is parsed synchronously: PROCESSING -> PARSED | ERROR | QUARANTINE
5. CSV and PDF stay PENDING (CSV goes through import_csv_statement)

Exactly one import record exists per non-duplicate file.
"""

import logging
import sqlite3
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from pathlib import PurePath

from ..config import ImportConfig
from ..parsers import StatementParseError, StatementParserRouter
from ..schemas.hashing import compute_file_hash, short_hash
from ..schemas.models import ErrorCode, ImportFormat, ImportStatus, ParseResult
from ..state_store import BankAccountRecord, StateStore

logger = logging.getLogger(__name__)

EXTENSION_FORMATS = {
    ".xml": ImportFormat.XML,
    ".csv": ImportFormat.CSV,
    ".pdf": ImportFormat.PDF,
}

# Length of the country code + check digits prefix of an IBAN
IBAN_PREFIX_LENGTH = 4

# CSV uploads that can still be turned into a statement
CSV_RETRY_STATES = (ImportStatus.PENDING, ImportStatus.ERROR)


class ImportOutcome(str, Enum):
    """What happened to an uploaded file."""

    CREATED = "CREATED"  # Stored PENDING, not parsed
    PARSED = "PARSED"
    QUARANTINED = "QUARANTINED"
    FAILED = "FAILED"
    DUPLICATE = "DUPLICATE"


@dataclass
class ImportResult:
    """Result of FileIngestor.ingest."""

    outcome: ImportOutcome
    import_id: int | None = None
    status: ImportStatus | None = None
    file_hash: str = ""
    error_code: ErrorCode | None = None
    message: str | None = None
    parser_used: str | None = None
    transactions_count: int = 0
    statement_id: int | None = None
    bank_account_id: int | None = None

    @property
    def is_duplicate(self) -> bool:
        return self.outcome == ImportOutcome.DUPLICATE

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "outcome": self.outcome.value,
            "import_id": self.import_id,
            "status": self.status.value if self.status else None,
            "file_hash": self.file_hash,
            "error_code": self.error_code.value if self.error_code else None,
            "message": self.message,
            "parser_used": self.parser_used,
            "transactions_count": self.transactions_count,
            "statement_id": self.statement_id,
            "bank_account_id": self.bank_account_id,
        }


@dataclass
class CsvImportResult:
    """Result of FileIngestor.import_csv_statement."""

    statement_id: int | None = None
    lines_count: int = 0
    skipped_rows: int = 0
    total_credit: Decimal = Decimal("0")
    total_debit: Decimal = Decimal("0")
    closing_balance: Decimal = Decimal("0")
    error_code: ErrorCode | None = None
    message: str | None = None

    @property
    def success(self) -> bool:
        return self.error_code is None and self.statement_id is not None


def detect_format(filename: str) -> ImportFormat:
    """Derive the import format from the file extension."""
    return EXTENSION_FORMATS.get(PurePath(filename).suffix.lower(), ImportFormat.UNKNOWN)


def iban_account_number(iban: str) -> str:
    """Domestic account number: the IBAN without its country/check prefix."""
    cleaned = "".join(iban.split())
    return cleaned[IBAN_PREFIX_LENGTH:] if len(cleaned) > IBAN_PREFIX_LENGTH else cleaned


class FileIngestor:
    """
    Accepts uploaded statement files and turns XML uploads into statements.

    The ingestor owns the import record lifecycle; parsers never write.
    """

    def __init__(
        self,
        store: StateStore,
        router: StatementParserRouter | None = None,
        config: ImportConfig | None = None,
    ):
        self.store = store
        self.router = router or StatementParserRouter()
        self.config = config or ImportConfig()

    def ingest(
        self,
        tenant_id: str,
        file_bytes: bytes,
        filename: str,
        bank_account_id: int | None = None,
    ) -> ImportResult:
        """
        Ingest an uploaded statement file.

        Args:
            tenant_id: Owning tenant
            file_bytes: Raw file content
            filename: Original file name (extension decides the format)
            bank_account_id: Declared bank account, if the uploader chose one

        Returns:
            ImportResult; duplicates create no record
        """
        file_hash = compute_file_hash(file_bytes)

        existing = self.store.find_import_by_hash(tenant_id, file_hash)
        if existing:
            return self._duplicate(tenant_id, filename, file_hash, existing.id)

        file_format = detect_format(filename)

        # Only this tenant's accounts may be recorded on the import
        if bank_account_id is not None and not self.store.get_bank_account(
            tenant_id, bank_account_id
        ):
            logger.warning(
                f"Declared bank account {bank_account_id} not found for tenant {tenant_id}"
            )
            bank_account_id = None

        try:
            import_id = self.store.create_import(
                tenant_id=tenant_id,
                original_filename=filename,
                file_format=file_format,
                file_size_bytes=len(file_bytes),
                sha256_hash=file_hash,
                bank_account_id=bank_account_id,
            )
        except sqlite3.IntegrityError:
            # Lost a race against a concurrent upload of the same bytes
            existing = self.store.find_import_by_hash(tenant_id, file_hash)
            if existing is None:
                raise
            return self._duplicate(tenant_id, filename, file_hash, existing.id)

        logger.info(
            f"Created import {import_id} for {filename} "
            f"({file_format.value}, {short_hash(file_hash)})"
        )

        result = ImportResult(
            outcome=ImportOutcome.CREATED,
            import_id=import_id,
            status=ImportStatus.PENDING,
            file_hash=file_hash,
            bank_account_id=bank_account_id,
        )

        if len(file_bytes) > self.config.max_file_size_bytes:
            message = "file too large"
            self.store.update_import_status(tenant_id, import_id, ImportStatus.ERROR, message)
            logger.warning(f"Import {import_id} rejected: {len(file_bytes)} bytes")
            result.outcome = ImportOutcome.FAILED
            result.status = ImportStatus.ERROR
            result.error_code = ErrorCode.FILE_TOO_LARGE
            result.message = message
            return result

        if file_format == ImportFormat.UNKNOWN:
            result.error_code = ErrorCode.UNRECOGNIZED_FORMAT
            result.message = f"Unrecognized file type: {filename}"
            return result

        if file_format != ImportFormat.XML:
            # CSV and PDF wait for manual handling
            return result

        return self._process_xml(tenant_id, import_id, file_bytes, bank_account_id, result)

    def _duplicate(
        self, tenant_id: str, filename: str, file_hash: str, existing_id: int
    ) -> ImportResult:
        logger.warning(
            f"Duplicate upload {filename} for tenant {tenant_id} "
            f"(hash {short_hash(file_hash)}, import {existing_id})"
        )
        return ImportResult(
            outcome=ImportOutcome.DUPLICATE,
            import_id=existing_id,
            file_hash=file_hash,
            error_code=ErrorCode.DUPLICATE_FILE,
            message="This file has already been imported",
        )

    def _process_xml(
        self,
        tenant_id: str,
        import_id: int,
        file_bytes: bytes,
        bank_account_id: int | None,
        result: ImportResult,
    ) -> ImportResult:
        """Parse an XML upload and create its statement."""
        self.store.update_import_status(tenant_id, import_id, ImportStatus.PROCESSING)

        try:
            parsed = self.router.parse(
                ImportFormat.XML,
                file_bytes,
                context={"tenant_id": tenant_id, "import_id": import_id},
            )
        except StatementParseError as e:
            status = (
                ImportStatus.QUARANTINE
                if e.error_code == ErrorCode.UNKNOWN_XML_DIALECT
                else ImportStatus.ERROR
            )
            return self._finish_failed(tenant_id, import_id, status, e.error_code, str(e), result)
        except Exception as e:
            self.store.update_import_status(
                tenant_id, import_id, ImportStatus.ERROR, error_message=f"Unexpected error: {e}"
            )
            logger.exception(f"Import {import_id} crashed while parsing")
            raise

        if not parsed.lines:
            return self._finish_failed(
                tenant_id,
                import_id,
                ImportStatus.QUARANTINE,
                ErrorCode.EMPTY_STATEMENT,
                "No transactions found",
                result,
                parsed,
            )

        account = self._resolve_bank_account(tenant_id, bank_account_id, parsed.iban)
        if account is None:
            return self._finish_failed(
                tenant_id,
                import_id,
                ImportStatus.QUARANTINE,
                ErrorCode.BANK_ACCOUNT_NOT_FOUND,
                f"No bank account for {parsed.iban or 'statement'}",
                result,
                parsed,
            )

        statement_id = self.store.create_statement_with_lines(
            tenant_id=tenant_id,
            bank_account_id=account.id,
            statement_date=parsed.period_end or date.today().isoformat(),
            statement_number=parsed.statement_number,
            currency=account.currency or self.config.default_currency,
            opening_balance=parsed.opening_balance,
            closing_balance=parsed.closing_balance,
            lines=parsed.lines,
            document_import_id=import_id,
        )

        self.store.update_import_status(
            tenant_id,
            import_id,
            ImportStatus.PARSED,
            transactions_count=parsed.transaction_count,
            parser_used=parsed.format_name,
            statement_id=statement_id,
            bank_account_id=account.id,
        )
        logger.info(
            f"Import {import_id} parsed as {parsed.format_name}: "
            f"statement {statement_id} with {parsed.transaction_count} lines"
        )

        result.outcome = ImportOutcome.PARSED
        result.status = ImportStatus.PARSED
        result.parser_used = parsed.format_name
        result.transactions_count = parsed.transaction_count
        result.statement_id = statement_id
        result.bank_account_id = account.id
        return result

    def _finish_failed(
        self,
        tenant_id: str,
        import_id: int,
        status: ImportStatus,
        error_code: ErrorCode,
        message: str,
        result: ImportResult,
        parsed: ParseResult | None = None,
    ) -> ImportResult:
        self.store.update_import_status(
            tenant_id,
            import_id,
            status,
            error_message=message,
            transactions_count=parsed.transaction_count if parsed else None,
            parser_used=parsed.format_name if parsed else None,
        )
        if status == ImportStatus.QUARANTINE:
            logger.warning(f"Import {import_id} quarantined: {message}")
        else:
            logger.error(f"Import {import_id} failed: {message}")

        result.outcome = (
            ImportOutcome.QUARANTINED if status == ImportStatus.QUARANTINE else ImportOutcome.FAILED
        )
        result.status = status
        result.error_code = error_code
        result.message = message
        if parsed:
            result.parser_used = parsed.format_name
            result.transactions_count = parsed.transaction_count
        return result

    def _resolve_bank_account(
        self, tenant_id: str, bank_account_id: int | None, iban: str | None
    ) -> BankAccountRecord | None:
        """Declared account, else lookup by IBAN, else by IBAN-derived account number."""
        if bank_account_id is not None:
            account = self.store.get_bank_account(tenant_id, bank_account_id)
            if account:
                return account

        if not iban:
            return None

        account = self.store.find_bank_account_by_iban(tenant_id, iban)
        if account:
            return account
        return self.store.find_bank_account_by_number(tenant_id, iban_account_number(iban))

    def import_csv_statement(
        self,
        tenant_id: str,
        bank_account_id: int,
        content: bytes | str,
        statement_date: str | None = None,
        statement_number: str | None = None,
        document_import_id: int | None = None,
    ) -> CsvImportResult:
        """
        Parse a CSV statement and store it with all lines atomically.

        Closing balance is total credit minus total debit; currency comes
        from the bank account. When document_import_id is given, that
        pending upload is completed (PARSED or ERROR).

        Returns:
            CsvImportResult; nothing is written unless parsing succeeded
        """
        account = self.store.get_bank_account(tenant_id, bank_account_id)
        if account is None:
            return CsvImportResult(
                error_code=ErrorCode.BANK_ACCOUNT_NOT_FOUND,
                message=f"Bank account {bank_account_id} not found",
            )

        if document_import_id is not None:
            upload = self.store.get_import(tenant_id, document_import_id)
            if upload is None:
                return CsvImportResult(
                    error_code=ErrorCode.IMPORT_NOT_FOUND,
                    message=f"Import {document_import_id} not found",
                )
            if upload.file_format != ImportFormat.CSV or upload.status not in CSV_RETRY_STATES:
                return CsvImportResult(
                    error_code=ErrorCode.INVALID_STATE,
                    message=(
                        f"Import {document_import_id} is a {upload.file_format.value} upload "
                        f"in state {upload.status.value}"
                    ),
                )

        try:
            parsed = self.router.parse(
                ImportFormat.CSV,
                content,
                context={"tenant_id": tenant_id, "import_id": document_import_id},
            )
        except StatementParseError as e:
            logger.error(f"CSV import failed: {e}")
            if document_import_id is not None:
                self.store.update_import_status(
                    tenant_id, document_import_id, ImportStatus.ERROR, error_message=str(e)
                )
            return CsvImportResult(error_code=e.error_code, message=str(e))

        closing_balance = parsed.total_credit - parsed.total_debit
        statement_id = self.store.create_statement_with_lines(
            tenant_id=tenant_id,
            bank_account_id=account.id,
            statement_date=statement_date or parsed.period_end or date.today().isoformat(),
            statement_number=statement_number,
            currency=account.currency,
            closing_balance=closing_balance,
            lines=parsed.lines,
            document_import_id=document_import_id,
        )

        if document_import_id is not None:
            self.store.update_import_status(
                tenant_id,
                document_import_id,
                ImportStatus.PARSED,
                transactions_count=parsed.transaction_count,
                parser_used=parsed.format_name,
                statement_id=statement_id,
                bank_account_id=account.id,
            )

        return CsvImportResult(
            statement_id=statement_id,
            lines_count=parsed.transaction_count,
            skipped_rows=parsed.skipped_rows,
            total_credit=parsed.total_credit,
            total_debit=parsed.total_debit,
            closing_balance=closing_balance,
        )
