"""
CLI main entry point.
"""

import argparse
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path

from ..config import Config, create_default_config, load_config
from ..ingestion import FileIngestor, ImportOutcome
from ..ledger_client import LedgerClient
from ..matching import MatchEngine
from ..posting import JournalWriter, LocalJournalWriter, PostingEngine
from ..review import ReconciliationWorkflow
from ..schemas.models import DocumentType
from ..services import ReconciliationService
from ..state_store import StateStore

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _allocation(value: str) -> tuple[int, Decimal]:
    """Parse an ID=AMOUNT allocation argument."""
    document_id, sep, amount = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"expected ID=AMOUNT, got {value!r}")
    try:
        return int(document_id), Decimal(amount)
    except (ValueError, InvalidOperation):
        raise argparse.ArgumentTypeError(f"expected ID=AMOUNT, got {value!r}") from None


def create_cli() -> argparse.ArgumentParser:
    """Create CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="bankrecon",
        description="Import bank statements, match them to invoices and post journal entries",
    )

    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # init-config command
    subparsers.add_parser("init-config", help="Write a default config file")

    # ingest command
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a statement file (XML/CSV/PDF)")
    ingest_parser.add_argument("file", type=Path, help="Statement file")
    ingest_parser.add_argument("--tenant", required=True, help="Tenant ID")
    ingest_parser.add_argument(
        "--bank-account",
        type=int,
        help="Bank account ID (default: resolve from the statement IBAN)",
    )

    # import-csv command
    csv_parser = subparsers.add_parser("import-csv", help="Import a CSV statement")
    csv_parser.add_argument("file", type=Path, help="CSV file")
    csv_parser.add_argument("--tenant", required=True, help="Tenant ID")
    csv_parser.add_argument("--bank-account", type=int, required=True, help="Bank account ID")
    csv_parser.add_argument("--date", help="Statement date YYYY-MM-DD (default: today)")
    csv_parser.add_argument("--number", help="Statement number")
    csv_parser.add_argument(
        "--import-id",
        type=int,
        help="Pending import record to complete (from a previous 'ingest')",
    )

    # match command
    match_parser = subparsers.add_parser("match", help="Auto-match statement lines")
    match_parser.add_argument("--tenant", required=True, help="Tenant ID")
    match_parser.add_argument("--statement", type=int, required=True, help="Statement ID")

    # confirm command
    confirm_parser = subparsers.add_parser("confirm", help="Confirm all suggested matches")
    confirm_parser.add_argument("--tenant", required=True, help="Tenant ID")
    confirm_parser.add_argument("--statement", type=int, required=True, help="Statement ID")

    # manual-match command
    manual_parser = subparsers.add_parser("manual-match", help="Match a line to a document")
    manual_parser.add_argument("--tenant", required=True, help="Tenant ID")
    manual_parser.add_argument("--line", type=int, required=True, help="Statement line ID")
    manual_parser.add_argument(
        "--type",
        choices=[t.value for t in DocumentType],
        required=True,
        help="Document type",
    )
    manual_parser.add_argument("--document", type=int, required=True, help="Document ID")

    # exclude command
    exclude_parser = subparsers.add_parser("exclude", help="Exclude a line from reconciliation")
    exclude_parser.add_argument("--tenant", required=True, help="Tenant ID")
    exclude_parser.add_argument("--line", type=int, required=True, help="Statement line ID")

    # allocate command
    allocate_parser = subparsers.add_parser(
        "allocate", help="Allocate a payment line across several documents"
    )
    allocate_parser.add_argument("--tenant", required=True, help="Tenant ID")
    allocate_parser.add_argument("--line", type=int, required=True, help="Statement line ID")
    allocate_parser.add_argument(
        "--document",
        dest="allocations",
        action="append",
        type=_allocation,
        metavar="ID=AMOUNT",
        help="Document share, repeatable (default: FIFO by due date)",
    )

    # post command
    post_parser = subparsers.add_parser("post", help="Post all matched lines of a statement")
    post_parser.add_argument("--tenant", required=True, help="Tenant ID")
    post_parser.add_argument("--statement", type=int, required=True, help="Statement ID")
    post_parser.add_argument(
        "--strict",
        action="store_true",
        help="Only mark reconciled when every non-excluded line is posted",
    )

    # post-line command
    post_line_parser = subparsers.add_parser("post-line", help="Post a single line")
    post_line_parser.add_argument("--tenant", required=True, help="Tenant ID")
    post_line_parser.add_argument("--line", type=int, required=True, help="Statement line ID")
    post_line_parser.add_argument("--model", help="Payment model code (default: by direction)")

    # reconcile command
    reconcile_parser = subparsers.add_parser(
        "reconcile", help="Auto-match and post a statement in one run"
    )
    reconcile_parser.add_argument("--tenant", required=True, help="Tenant ID")
    reconcile_parser.add_argument("--statement", type=int, required=True, help="Statement ID")
    reconcile_parser.add_argument(
        "--no-post",
        dest="post",
        action="store_false",
        help="Only run matching",
    )

    # status command
    status_parser = subparsers.add_parser("status", help="Show statements and line states")
    status_parser.add_argument("--tenant", required=True, help="Tenant ID")
    status_parser.add_argument("--statement", type=int, help="Statement ID")

    return parser


def build_writer(config: Config, store: StateStore) -> JournalWriter:
    """Journal writer for the configured ledger mode."""
    if config.ledger.mode == "remote":
        return LedgerClient(
            base_url=config.ledger.base_url,
            token=config.ledger.token,
            timeout=config.ledger.timeout_seconds,
            max_retries=config.ledger.max_retries,
        )
    return LocalJournalWriter(store)


def cmd_init_config(config_path: Path) -> int:
    """Write a default config file."""
    if config_path.exists():
        print(f"❌ Config file already exists: {config_path}")
        return 1
    create_default_config(config_path)
    print(f"✓ Wrote default config to {config_path}")
    return 0


def cmd_ingest(config: Config, path: Path, tenant_id: str, bank_account_id: int | None) -> int:
    """Ingest a statement file."""
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1

    store = StateStore(config.state_db_path)
    ingestor = FileIngestor(store, config=config.imports)
    result = ingestor.ingest(tenant_id, path.read_bytes(), path.name, bank_account_id)

    print(f"📄 {path.name}: {result.outcome.value}")
    if result.import_id is not None:
        print(f"  Import ID:     {result.import_id}")
        print(f"  Status:        {result.status.value if result.status else '-'}")
    if result.parser_used:
        print(f"  Parser:        {result.parser_used}")
    if result.statement_id is not None:
        print(f"  Statement ID:  {result.statement_id}")
        print(f"  Transactions:  {result.transactions_count}")
    if result.error_code:
        print(f"  ⚠️  {result.error_code.value}: {result.message}")

    return 1 if result.outcome == ImportOutcome.FAILED else 0


def cmd_import_csv(
    config: Config,
    path: Path,
    tenant_id: str,
    bank_account_id: int,
    statement_date: str | None,
    statement_number: str | None,
    import_id: int | None,
) -> int:
    """Import a CSV statement."""
    if not path.exists():
        print(f"❌ File not found: {path}")
        return 1

    store = StateStore(config.state_db_path)
    ingestor = FileIngestor(store, config=config.imports)
    result = ingestor.import_csv_statement(
        tenant_id,
        bank_account_id,
        path.read_bytes(),
        statement_date=statement_date,
        statement_number=statement_number,
        document_import_id=import_id,
    )

    if not result.success:
        code = result.error_code.value if result.error_code else "ERROR"
        print(f"❌ {code}: {result.message}")
        return 1

    print(f"✓ Statement {result.statement_id} imported")
    print(f"  Lines:           {result.lines_count} ({result.skipped_rows} skipped)")
    print(f"  Total credit:    {result.total_credit}")
    print(f"  Total debit:     {result.total_debit}")
    print(f"  Closing balance: {result.closing_balance}")
    return 0


def cmd_match(config: Config, tenant_id: str, statement_id: int) -> int:
    """Auto-match a statement."""
    store = StateStore(config.state_db_path)
    if store.get_statement(tenant_id, statement_id) is None:
        print(f"❌ Statement {statement_id} not found")
        return 1

    result = MatchEngine(store, config.matching).auto_match(tenant_id, statement_id)
    print(f"🔗 Matched {result.matched} of {result.total} line(s)")
    print(f"  Auto-matched: {result.auto_matched}")
    print(f"  Suggested:    {result.suggested}")
    for line_id, candidate in sorted(result.candidates.items()):
        print(
            f"  [{line_id}] → {candidate.document_type.value} {candidate.document_id} "
            f"({candidate.confidence}: {', '.join(candidate.reasons)})"
        )
    return 0


def cmd_confirm(config: Config, tenant_id: str, statement_id: int) -> int:
    """Confirm suggested matches."""
    store = StateStore(config.state_db_path)
    confirmed = ReconciliationWorkflow(store).bulk_confirm(tenant_id, statement_id)
    print(f"✓ Confirmed {confirmed} suggestion(s)")
    return 0


def cmd_manual_match(
    config: Config, tenant_id: str, line_id: int, document_type: str, document_id: int
) -> int:
    """Manually match a line."""
    store = StateStore(config.state_db_path)
    result = ReconciliationWorkflow(store).manual_match(
        tenant_id, line_id, DocumentType(document_type), document_id
    )
    if not result.success:
        print(f"❌ {result.error_code.value}: {result.message}")
        return 1
    print(f"✓ Line {line_id} matched to {document_type} {document_id}")
    return 0


def cmd_exclude(config: Config, tenant_id: str, line_id: int) -> int:
    """Exclude a line."""
    store = StateStore(config.state_db_path)
    result = ReconciliationWorkflow(store).exclude_line(tenant_id, line_id)
    if not result.success:
        print(f"❌ {result.error_code.value}: {result.message}")
        return 1
    print(f"✓ Line {line_id} excluded")
    return 0


def cmd_allocate(
    config: Config,
    tenant_id: str,
    line_id: int,
    allocations: list[tuple[int, Decimal]] | None,
) -> int:
    """Allocate a line across documents."""
    store = StateStore(config.state_db_path)
    result = ReconciliationWorkflow(store).allocate_payment(tenant_id, line_id, allocations)
    if not result.success:
        print(f"❌ {result.error_code.value}: {result.message}")
        return 1

    print(f"✓ Line {line_id} allocated ({result.match_status.value})")
    for document_id, amount in result.allocations:
        print(f"  Document {document_id}: {amount}")
    return 0


def cmd_post(config: Config, tenant_id: str, statement_id: int, strict: bool) -> int:
    """Post all matched lines of a statement."""
    store = StateStore(config.state_db_path)
    engine = PostingEngine(store, build_writer(config, store), config.posting)
    result = engine.post_all_matched(tenant_id, statement_id, strict=strict or None)

    if result.error_code:
        print(f"❌ {result.error_code.value}: statement {statement_id}")
        return 1

    print(f"📒 Posted {result.posted} line(s)")
    if result.status:
        print(f"  Statement status: {result.status.value}")
    if result.failures:
        print("⚠️  Failures:")
        for failure in result.failures:
            print(f"   - line {failure.line_id}: {failure.message}")
        return 1
    return 0


def cmd_post_line(config: Config, tenant_id: str, line_id: int, model: str | None) -> int:
    """Post a single line."""
    store = StateStore(config.state_db_path)
    engine = PostingEngine(store, build_writer(config, store), config.posting)
    try:
        result = engine.post_line(tenant_id, line_id, payment_model_code=model)
    except Exception as e:
        logger.exception(f"Failed to post line {line_id}")
        print(f"❌ Posting failed: {e}")
        return 1

    if not result.success:
        print(f"❌ {result.error_code.value}: {result.message}")
        return 1
    print(f"✓ Line {line_id} posted as journal entry {result.journal_entry_id}")
    return 0


def cmd_reconcile(config: Config, tenant_id: str, statement_id: int, post: bool) -> int:
    """Run matching and posting for a statement."""
    store = StateStore(config.state_db_path)
    service = ReconciliationService(store, build_writer(config, store), config)
    result = service.run_statement(tenant_id, statement_id, post=post)

    print()
    print("📊 Reconciliation Results")
    print("=" * 40)
    print(f"  Status:           {result.state.value}")
    print(f"  Lines considered: {result.lines_considered}")
    print(f"  Auto-matched:     {result.auto_matched}")
    print(f"  Suggested:        {result.suggested}")
    print(f"  Posted:           {result.posted}")
    if result.statement_status:
        print(f"  Statement:        {result.statement_status.value}")
    print(f"  Duration:         {result.duration_ms}ms")
    print()

    if result.errors:
        print("⚠️  Errors encountered:")
        for error in result.errors:
            print(f"   - {error}")

    if result.success:
        print("✓ Reconciliation completed successfully")
        return 0
    print("❌ Reconciliation failed")
    return 1


def cmd_status(config: Config, tenant_id: str, statement_id: int | None) -> int:
    """Show statement status."""
    store = StateStore(config.state_db_path)

    if statement_id is None:
        statements = store.list_statements(tenant_id)
        print(f"\n📊 Statements for {tenant_id}")
        print("=" * 40)
        for statement in statements:
            print(
                f"  [{statement.id}] {statement.statement_date} "
                f"{statement.statement_number or '-'} {statement.status.value}"
            )
        print(f"\n  Total: {len(statements)}")
        return 0

    statement = store.get_statement(tenant_id, statement_id)
    if statement is None:
        print(f"❌ Statement {statement_id} not found")
        return 1

    counts = store.get_line_status_counts(tenant_id, statement_id)
    print(f"\n📊 Statement {statement_id} ({statement.status.value})")
    print("=" * 40)
    for status, count in counts.items():
        print(f"  {status:<18} {count}")
    print()
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_cli()
    parsed = parser.parse_args(args)

    setup_logging(parsed.verbose)

    if not parsed.command:
        parser.print_help()
        return 1

    if parsed.command == "init-config":
        return cmd_init_config(parsed.config)

    # Load config
    try:
        config = load_config(parsed.config)
    except Exception as e:
        print(f"❌ Failed to load config: {e}")
        return 1

    errors = config.validate()
    if errors:
        for error in errors:
            print(f"❌ Config: {error}")
        return 1

    # Route to command
    if parsed.command == "ingest":
        return cmd_ingest(config, parsed.file, parsed.tenant, parsed.bank_account)
    elif parsed.command == "import-csv":
        return cmd_import_csv(
            config,
            parsed.file,
            parsed.tenant,
            parsed.bank_account,
            parsed.date,
            parsed.number,
            parsed.import_id,
        )
    elif parsed.command == "match":
        return cmd_match(config, parsed.tenant, parsed.statement)
    elif parsed.command == "confirm":
        return cmd_confirm(config, parsed.tenant, parsed.statement)
    elif parsed.command == "manual-match":
        return cmd_manual_match(config, parsed.tenant, parsed.line, parsed.type, parsed.document)
    elif parsed.command == "exclude":
        return cmd_exclude(config, parsed.tenant, parsed.line)
    elif parsed.command == "allocate":
        return cmd_allocate(config, parsed.tenant, parsed.line, parsed.allocations)
    elif parsed.command == "post":
        return cmd_post(config, parsed.tenant, parsed.statement, parsed.strict)
    elif parsed.command == "post-line":
        return cmd_post_line(config, parsed.tenant, parsed.line, parsed.model)
    elif parsed.command == "reconcile":
        return cmd_reconcile(config, parsed.tenant, parsed.statement, parsed.post)
    elif parsed.command == "status":
        return cmd_status(config, parsed.tenant, parsed.statement)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
