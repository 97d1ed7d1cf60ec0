"""
Tests for the SQLite state store and its migrations.
"""

import sqlite3
from decimal import Decimal

import pytest

from bankrecon.schemas.journal import JournalLine
from bankrecon.schemas.models import (
    Direction,
    DocumentType,
    ImportFormat,
    ImportStatus,
    MatchStatus,
    ParsedLine,
    StatementStatus,
)
from bankrecon.state_store import StateStore
from bankrecon.state_store.migrations import MigrationRunner, get_all_migrations

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


def _statement(store: StateStore, bank_account_id: int, *amounts: str) -> int:
    """Statement with one credit line per amount."""
    lines = [
        ParsedLine(line_date="2026-01-15", amount=Decimal(a), direction=Direction.CREDIT)
        for a in amounts
    ]
    return store.create_statement_with_lines(
        TENANT,
        bank_account_id,
        statement_date="2026-01-15",
        currency="RSD",
        closing_balance=sum((Decimal(a) for a in amounts), Decimal("0")),
        lines=lines,
    )


class TestImports:
    """Test import records."""

    def test_unique_hash_per_tenant(self, store):
        store.create_import(TENANT, "a.csv", ImportFormat.CSV, 10, "f" * 64)
        with pytest.raises(sqlite3.IntegrityError):
            store.create_import(TENANT, "b.csv", ImportFormat.CSV, 10, "f" * 64)
        # Same hash for another tenant is fine
        store.create_import(OTHER_TENANT, "a.csv", ImportFormat.CSV, 10, "f" * 64)

    def test_invalid_hash_rejected(self, store):
        with pytest.raises(ValueError):
            store.create_import(TENANT, "a.csv", ImportFormat.CSV, 10, "not-a-hash")
        with pytest.raises(ValueError):
            store.create_import(TENANT, "a.csv", ImportFormat.CSV, 10, "F" * 64)
        assert store.list_imports(TENANT) == []

    def test_status_update_keeps_unset_fields(self, store):
        import_id = store.create_import(TENANT, "a.xml", ImportFormat.XML, 10, "a" * 64)
        store.update_import_status(
            TENANT, import_id, ImportStatus.PROCESSING, transactions_count=4, parser_used="MT940"
        )
        record = store.get_import(TENANT, import_id)
        assert record.processed_at is None

        store.update_import_status(TENANT, import_id, ImportStatus.PARSED)
        record = store.get_import(TENANT, import_id)
        assert record.status == ImportStatus.PARSED
        assert record.transactions_count == 4
        assert record.parser_used == "MT940"
        assert record.processed_at is not None

    def test_list_by_status(self, store):
        store.create_import(TENANT, "a.csv", ImportFormat.CSV, 1, "1" * 64)
        second = store.create_import(TENANT, "b.xml", ImportFormat.XML, 1, "2" * 64)
        store.update_import_status(TENANT, second, ImportStatus.QUARANTINE, "no account")

        quarantined = store.list_imports(TENANT, ImportStatus.QUARANTINE)
        assert [r.id for r in quarantined] == [second]
        assert quarantined[0].error_message == "no account"
        assert len(store.list_imports(TENANT)) == 2
        assert store.list_imports(OTHER_TENANT) == []


class TestStatements:
    """Test statements and lines."""

    def test_lines_stored_unmatched(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "10.00", "20.00")

        lines = store.get_statement_lines(TENANT, statement_id)
        assert [line.amount for line in lines] == [Decimal("10.00"), Decimal("20.00")]
        assert all(line.match_status == MatchStatus.UNMATCHED for line in lines)
        assert not any(line.is_posted for line in lines)
        assert store.get_statement(TENANT, statement_id).status == StatementStatus.IMPORTED

    def test_tenant_isolation(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "10.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]

        assert store.get_statement(OTHER_TENANT, statement_id) is None
        assert store.get_statement_line(OTHER_TENANT, line.id) is None
        assert store.get_statement_lines(OTHER_TENANT, statement_id) == []

    def test_status_counts(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "10.00", "20.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        store.exclude_line(TENANT, line.id)

        counts = store.get_line_status_counts(TENANT, statement_id)
        assert counts["unmatched"] == 1
        assert counts["excluded"] == 1
        assert counts["posted"] == 0


class TestLineGuards:
    """Test the conditional UPDATEs that keep concurrent callers consistent."""

    def test_auto_match_only_on_unmatched(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "1000.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]

        assert store.set_auto_match(
            TENANT, line.id, MatchStatus.MATCHED, 95, DocumentType.INVOICE, seeded["invoice_id"]
        )
        # Second write loses: the line is no longer unmatched
        assert not store.set_auto_match(
            TENANT, line.id, MatchStatus.SUGGESTED, 40, DocumentType.INVOICE, seeded["invoice_id"]
        )

        line = store.get_statement_line(TENANT, line.id)
        assert line.match_status == MatchStatus.MATCHED
        assert line.match_confidence == 95
        assert line.matched_document == (DocumentType.INVOICE, seeded["invoice_id"])

    def test_manual_match_clears_confidence(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "1000.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        store.set_auto_match(
            TENANT, line.id, MatchStatus.SUGGESTED, 45, DocumentType.INVOICE, seeded["invoice_id"]
        )

        assert store.set_manual_match(
            TENANT, line.id, DocumentType.SUPPLIER_INVOICE, seeded["supplier_invoice_id"]
        )
        line = store.get_statement_line(TENANT, line.id)
        assert line.match_status == MatchStatus.MANUALLY_MATCHED
        assert line.match_confidence is None
        assert line.matched_invoice_id is None
        assert line.matched_supplier_invoice_id == seeded["supplier_invoice_id"]

    def test_single_claim_wins(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "10.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]

        assert store.claim_line_for_posting(TENANT, line.id, "first")
        assert not store.claim_line_for_posting(TENANT, line.id, "second")
        # A claimed line cannot be re-matched or excluded
        assert not store.exclude_line(TENANT, line.id)
        assert not store.release_posting_claim(TENANT, line.id, "second")
        assert store.release_posting_claim(TENANT, line.id, "first")
        assert store.claim_line_for_posting(TENANT, line.id, "second")

    @pytest.mark.parametrize(
        "status", [MatchStatus.EXCLUDED, MatchStatus.SUGGESTED, MatchStatus.PARTIALLY_MATCHED]
    )
    def test_claim_requires_postable_status(self, store, seeded, status):
        statement_id = _statement(store, seeded["bank_account_id"], "10.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        if status == MatchStatus.EXCLUDED:
            store.exclude_line(TENANT, line.id)
        elif status == MatchStatus.SUGGESTED:
            store.set_auto_match(
                TENANT, line.id, status, 50, DocumentType.INVOICE, seeded["invoice_id"]
            )
        else:
            store.allocate_line(
                TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("4.00"))]
            )

        assert not store.claim_line_for_posting(TENANT, line.id, "token")
        assert store.get_statement_line(TENANT, line.id).posting_claim is None

    def test_finalize_requires_claim(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "1000.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        document = (DocumentType.INVOICE, seeded["invoice_id"])

        assert not store.finalize_posting(TENANT, line.id, "nobody", 7, document)
        assert store.get_document(TENANT, *document).status == "sent"

        store.claim_line_for_posting(TENANT, line.id, "token")
        assert store.finalize_posting(TENANT, line.id, "token", 7, document)

        line = store.get_statement_line(TENANT, line.id)
        assert line.journal_entry_id == 7
        assert line.posting_claim is None
        assert store.get_document(TENANT, *document).status == "paid"
        assert store.get_document(TENANT, *document).amount_paid == Decimal("1000.00")
        # journal_entry_id is immutable once set
        assert not store.claim_line_for_posting(TENANT, line.id, "again")


class TestAllocations:
    """Test splitting a line over several documents."""

    def test_allocate_and_accumulate(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "1000.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        other = store.create_invoice(TENANT, "INV-2", Decimal("300.00"))

        status = store.allocate_line(
            TENANT,
            line.id,
            DocumentType.INVOICE,
            [(other, Decimal("300.00")), (seeded["invoice_id"], Decimal("200.00"))],
        )

        assert status == MatchStatus.PARTIALLY_MATCHED
        assert store.get_document(TENANT, DocumentType.INVOICE, other).status == "paid"
        invoice = store.get_document(TENANT, DocumentType.INVOICE, seeded["invoice_id"])
        assert invoice.status == "partially_paid"
        assert invoice.remaining == Decimal("800.00")
        assert [d.id for d in store.get_open_documents(TENANT, DocumentType.INVOICE)] == [
            seeded["invoice_id"]
        ]

        status = store.allocate_line(
            TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("500.00"))]
        )

        assert status == MatchStatus.MANUALLY_MATCHED
        allocations = store.get_line_allocations(TENANT, line.id)
        assert [(a.document_type, a.document_id, a.amount) for a in allocations] == [
            (DocumentType.INVOICE, other, Decimal("300.00")),
            (DocumentType.INVOICE, seeded["invoice_id"], Decimal("200.00")),
            (DocumentType.INVOICE, seeded["invoice_id"], Decimal("500.00")),
        ]
        line = store.get_statement_line(TENANT, line.id)
        assert line.matched_invoice_id is None
        assert line.match_confidence is None

    def test_over_allocation_writes_nothing(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "100.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        other = store.create_invoice(TENANT, "INV-2", Decimal("50.00"))

        # Second share exceeds what is left on its document
        assert (
            store.allocate_line(
                TENANT,
                line.id,
                DocumentType.INVOICE,
                [(seeded["invoice_id"], Decimal("40.00")), (other, Decimal("60.00"))],
            )
            is None
        )
        # Shares exceed the line amount
        assert (
            store.allocate_line(
                TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("100.01"))]
            )
            is None
        )

        assert store.get_line_allocations(TENANT, line.id) == []
        invoice = store.get_document(TENANT, DocumentType.INVOICE, seeded["invoice_id"])
        assert (invoice.status, invoice.amount_paid) == ("sent", Decimal("0"))
        assert store.get_statement_line(TENANT, line.id).match_status == MatchStatus.UNMATCHED

    def test_allocated_line_keeps_its_status(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "100.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        store.allocate_line(
            TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("10.00"))]
        )

        assert not store.exclude_line(TENANT, line.id)
        assert not store.set_manual_match(
            TENANT, line.id, DocumentType.INVOICE, seeded["invoice_id"]
        )
        assert (
            store.get_statement_line(TENANT, line.id).match_status
            == MatchStatus.PARTIALLY_MATCHED
        )

    def test_claimed_line_not_allocated(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "100.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]
        store.claim_line_for_posting(TENANT, line.id, "token")

        assert (
            store.allocate_line(
                TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("10.00"))]
            )
            is None
        )

    def test_other_tenant_line_not_allocated(self, store, seeded):
        statement_id = _statement(store, seeded["bank_account_id"], "100.00")
        line = store.get_statement_lines(TENANT, statement_id)[0]

        assert (
            store.allocate_line(
                OTHER_TENANT, line.id, DocumentType.INVOICE, [(seeded["invoice_id"], Decimal("1"))]
            )
            is None
        )


class TestDocumentsAndRules:
    """Test open documents, posting rules and journal entries."""

    def test_open_documents(self, store, seeded):
        store.create_invoice(TENANT, "INV-DRAFT", Decimal("5"), status="draft")
        store.create_invoice(TENANT, "INV-OLD", Decimal("5"), status="overdue")
        store.create_invoice(TENANT, "INV-PAID", Decimal("5"), status="paid")

        numbers = [d.invoice_number for d in store.get_open_documents(TENANT, DocumentType.INVOICE)]
        assert numbers == ["INV-2026-0042", "INV-OLD"]

        [supplier] = store.get_open_documents(TENANT, DocumentType.SUPPLIER_INVOICE)
        assert supplier.partner_name == "Telekom Srbija"
        assert supplier.document_type == DocumentType.SUPPLIER_INVOICE

    def test_posting_rule_roundtrip(self, store):
        store.create_posting_rule(
            TENANT,
            "CUSTOMER_PAYMENT",
            "Customer payment with fee",
            [
                {"side": "DEBIT", "account_source": "DYNAMIC", "dynamic_source": "BANK_ACCOUNT"},
                {
                    "side": "CREDIT",
                    "account_source": "FIXED",
                    "account_code": "2040",
                    "amount_factor": "1",
                    "description_template": "Payment {reference}",
                },
            ],
        )

        rule = store.get_posting_rule(TENANT, "CUSTOMER_PAYMENT")
        assert rule.name == "Customer payment with fee"
        assert [rl.side for rl in rule.lines] == ["DEBIT", "CREDIT"]
        assert rule.lines[0].amount_factor == Decimal("1")
        assert rule.lines[1].description_template == "Payment {reference}"
        assert store.get_posting_rule(TENANT, "VENDOR_PAYMENT") is None
        assert store.get_posting_rule(OTHER_TENANT, "CUSTOMER_PAYMENT") is None

    def test_inactive_rule_ignored(self, store):
        store.create_posting_rule(
            TENANT, "VENDOR_PAYMENT", "Old", [{"side": "DEBIT"}], is_active=False
        )
        assert store.get_posting_rule(TENANT, "VENDOR_PAYMENT") is None

    def test_journal_entry_roundtrip(self, store):
        entry_id = store.create_journal_entry(
            TENANT,
            entry_date="2026-01-15",
            reference="BS-INV-1",
            description="Bank payment: test",
            lines=[
                JournalLine("2410", debit=Decimal("10.00"), sort_order=0),
                JournalLine("2040", credit=Decimal("10.00"), sort_order=1),
            ],
        )

        entry = store.get_journal_entry(TENANT, entry_id)
        assert entry.reference == "BS-INV-1"
        assert [line.account_code for line in entry.lines] == ["2410", "2040"]
        assert entry.lines[0].debit == Decimal("10.00")
        assert store.get_journal_entry(OTHER_TENANT, entry_id) is None


class TestMigrations:
    """Test versioned migrations."""

    def test_migrations_discovered_in_order(self):
        versions = [m.version for m in get_all_migrations()]
        assert versions == sorted(versions)
        assert versions[:4] == [1, 2, 3, 4]

    def test_fresh_store_applies_all(self, temp_db):
        StateStore(temp_db)

        conn = sqlite3.connect(temp_db)
        try:
            applied = {row[0] for row in conn.execute("SELECT version FROM migrations")}
            columns = {row[1] for row in conn.execute("PRAGMA table_info(statement_lines)")}
            import_columns = {row[1] for row in conn.execute("PRAGMA table_info(document_imports)")}
            invoice_columns = {row[1] for row in conn.execute("PRAGMA table_info(invoices)")}
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        finally:
            conn.close()

        assert {1, 2, 3, 4} <= applied
        assert "amount_paid" in invoice_columns
        assert "statement_line_allocations" in tables
        assert {"value_date", "counterparty_iban", "transaction_type", "posting_claim"} <= columns
        assert {"parser_used", "processed_at", "statement_id"} <= import_columns

    def test_runner_on_base_schema(self, temp_db):
        StateStore(temp_db, run_migrations=False)

        conn = sqlite3.connect(temp_db)
        try:
            runner = MigrationRunner(conn)
            assert [m.version for m in runner.get_pending()][:4] == [1, 2, 3, 4]
            runner.run_pending()
            assert runner.get_pending() == []
            assert runner.run_pending() == []
            assert runner.get_current_version() >= 4
        finally:
            conn.close()

    def test_reopen_is_idempotent(self, temp_db):
        StateStore(temp_db)
        StateStore(temp_db)

        conn = sqlite3.connect(temp_db)
        try:
            count = conn.execute("SELECT COUNT(*) FROM migrations").fetchone()[0]
        finally:
            conn.close()
        assert count == len(get_all_migrations())

    def test_rollback_posting_rules(self, temp_db):
        StateStore(temp_db)

        conn = sqlite3.connect(temp_db)
        try:
            runner = MigrationRunner(conn)
            migration = next(m for m in get_all_migrations() if m.version == 1)
            runner.rollback_migration(migration)
            tables = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        finally:
            conn.close()

        assert "posting_rules" not in tables
        assert 1 not in runner.get_applied_versions()

    @pytest.mark.parametrize("version", [2, 4])
    def test_irreversible_migration(self, temp_db, version):
        StateStore(temp_db)

        conn = sqlite3.connect(temp_db)
        try:
            runner = MigrationRunner(conn)
            migration = next(m for m in get_all_migrations() if m.version == version)
            with pytest.raises(NotImplementedError):
                runner.rollback_migration(migration)
        finally:
            conn.close()
