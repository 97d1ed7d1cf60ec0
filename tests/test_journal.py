"""
Tests for content hashing and journal line validation.
"""

from decimal import Decimal

from bankrecon.schemas.hashing import compute_file_hash, is_valid_file_hash, short_hash
from bankrecon.schemas.journal import JournalLine, to_cents, validate_journal_lines


class TestFileHash:
    """Test upload hashing."""

    def test_deterministic(self):
        content = b"Date;Amount\n15.01.2026;100,00\n"
        assert compute_file_hash(content) == compute_file_hash(content)

    def test_single_byte_changes_hash(self):
        assert compute_file_hash(b"abc") != compute_file_hash(b"abd")

    def test_valid_digest(self):
        digest = compute_file_hash(b"statement")
        assert len(digest) == 64
        assert is_valid_file_hash(digest)

    def test_invalid_digest(self):
        assert not is_valid_file_hash(None)
        assert not is_valid_file_hash("")
        assert not is_valid_file_hash("ABC")
        assert not is_valid_file_hash("g" * 64)

    def test_short_hash(self):
        digest = compute_file_hash(b"statement")
        assert short_hash(digest) == digest[:12]
        assert short_hash(digest, 8) == digest[:8]


class TestValidateJournalLines:
    """Test the balance rules applied before any journal entry is written."""

    def test_balanced_pair(self):
        lines = [
            JournalLine("2410", debit=Decimal("1000.00")),
            JournalLine("2040", credit=Decimal("1000.00")),
        ]
        assert validate_journal_lines(lines) == []

    def test_split_credit(self):
        lines = [
            JournalLine("2410", debit=Decimal("100.00")),
            JournalLine("2040", credit=Decimal("98.00")),
            JournalLine("6630", credit=Decimal("2.00")),
        ]
        assert validate_journal_lines(lines) == []

    def test_imbalance(self):
        lines = [
            JournalLine("2410", debit=Decimal("1000.00")),
            JournalLine("2040", credit=Decimal("999.99")),
        ]
        errors = validate_journal_lines(lines)
        assert len(errors) == 1
        assert "do not equal" in errors[0]

    def test_single_line_rejected(self):
        errors = validate_journal_lines([JournalLine("2410", debit=Decimal("1"))])
        assert "at least two lines" in errors[0]

    def test_both_sides_rejected(self):
        lines = [
            JournalLine("2410", debit=Decimal("5"), credit=Decimal("5")),
            JournalLine("2040", debit=Decimal("0"), credit=Decimal("0")),
        ]
        errors = validate_journal_lines(lines)
        assert any("both debit and credit" in e for e in errors)
        assert any("no amount" in e for e in errors)

    def test_negative_rejected(self):
        lines = [
            JournalLine("2410", debit=Decimal("-5")),
            JournalLine("2040", credit=Decimal("-5")),
        ]
        errors = validate_journal_lines(lines)
        assert any("non-negative" in e for e in errors)

    def test_missing_account(self):
        lines = [
            JournalLine("", debit=Decimal("5")),
            JournalLine("2040", credit=Decimal("5")),
        ]
        assert any("account_code" in e for e in validate_journal_lines(lines))

    def test_to_cents_rounds_half_up(self):
        assert to_cents(Decimal("1.005")) == Decimal("1.01")
        assert to_cents(Decimal("2")) == Decimal("2.00")

    def test_to_dict(self):
        line = JournalLine("2410", debit=Decimal("12.5"), description="Bank payment")
        assert line.to_dict() == {
            "account_code": "2410",
            "debit": "12.50",
            "credit": "0.00",
            "description": "Bank payment",
            "sort_order": 0,
        }
