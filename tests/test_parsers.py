"""
Tests for statement parsers and the parser router.
"""

from decimal import Decimal

import pytest

from bankrecon.parsers import (
    Camt053Parser,
    CsvStatementParser,
    Mt940Parser,
    NbsXmlParser,
    StatementDialect,
    StatementParseError,
    StatementParserRouter,
    decode_content,
    detect_xml_dialect,
    normalize_date,
    parse_amount,
    resolve_columns,
    sniff_delimiter,
)
from bankrecon.schemas.models import Direction, ErrorCode, ImportFormat, TransactionType


class TestHelpers:
    """Test amount and date normalization."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1000.00", Decimal("1000.00")),
            ("1.000,00", Decimal("1000.00")),
            ("1,000.50", Decimal("1000.50")),
            ("-250,00", Decimal("-250.00")),
            (" 12 345,67 ", Decimal("12345.67")),
        ],
    )
    def test_parse_amount(self, raw, expected):
        assert parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "abc", "NaN"])
    def test_parse_amount_invalid(self, raw):
        assert parse_amount(raw) is None

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2026-01-15", "2026-01-15"),
            ("15.01.2026", "2026-01-15"),
            ("15/01/2026", "2026-01-15"),
            ("20260115", "2026-01-15"),
            ("2026-01-15T10:30:00", "2026-01-15"),
        ],
    )
    def test_normalize_date(self, raw, expected):
        assert normalize_date(raw) == expected

    def test_normalize_date_invalid(self):
        assert normalize_date("bad-date") is None
        assert normalize_date(None) is None

    def test_decode_cp1250_fallback(self):
        raw = "Plaćanje".encode("cp1250")
        assert decode_content(raw) == "Plaćanje"

    def test_decode_utf8_bom(self):
        assert decode_content(b"\xef\xbb\xbfDate") == "Date"


class TestCsvParser:
    """Test header-detecting CSV parsing."""

    def test_sniff_delimiter(self):
        assert sniff_delimiter("Date;Amount;Partner") == ";"
        assert sniff_delimiter("Date\tAmount") == "\t"
        assert sniff_delimiter("Date,Amount") == ","

    def test_serbian_headers(self):
        columns = resolve_columns(["Datum", "Opis", "Iznos", "Nalogodavac", "Poziv na broj"])
        assert columns == {
            "date": 0,
            "description": 1,
            "amount": 2,
            "partner_name": 3,
            "payment_reference": 4,
        }

    def test_parse_sample(self, sample_csv):
        result = CsvStatementParser().parse(sample_csv)

        assert result.transaction_count == 2
        assert result.skipped_rows == 1
        first, second = result.lines
        assert first.line_date == "2026-01-15"
        assert first.amount == Decimal("1000.00")
        assert first.direction == Direction.CREDIT
        assert first.partner_name == "Acme d.o.o."
        assert first.payment_reference == "INV-2026-0042"
        assert second.amount == Decimal("250.00")
        assert second.direction == Direction.DEBIT
        assert result.period_start == "2026-01-15"
        assert result.period_end == "2026-01-16"

    def test_totals_invariant(self, sample_csv):
        result = CsvStatementParser().parse(sample_csv)
        assert result.total_credit == Decimal("1000.00")
        assert result.total_debit == Decimal("250.00")
        assert result.closing_balance == result.total_credit - result.total_debit

    def test_direction_column_wins_over_sign(self):
        content = "date,amount,direction\n2026-01-15,100.00,Rashod\n2026-01-16,50.00,Prihod\n"
        result = CsvStatementParser().parse(content)
        assert [line.direction for line in result.lines] == [Direction.DEBIT, Direction.CREDIT]

    def test_missing_columns(self):
        with pytest.raises(StatementParseError) as exc_info:
            CsvStatementParser().parse("Description;Partner\nfoo;bar\n")
        assert exc_info.value.error_code == ErrorCode.MISSING_COLUMNS

    def test_no_valid_rows(self):
        with pytest.raises(StatementParseError) as exc_info:
            CsvStatementParser().parse("Date;Amount\nnot-a-date;abc\n")
        assert exc_info.value.error_code == ErrorCode.EMPTY_STATEMENT

    def test_zero_amount_skipped(self):
        result = CsvStatementParser().parse("Date;Amount\n2026-01-15;0,00\n2026-01-15;5,00\n")
        assert result.transaction_count == 1
        assert result.skipped_rows == 1


class TestDialectDetection:
    """Test XML dialect sniffing."""

    def test_camt(self, sample_camt053):
        assert detect_xml_dialect(sample_camt053) == StatementDialect.CAMT053

    def test_bare_camt_without_namespace(self):
        assert detect_xml_dialect("<BkToCstmrStmt><Stmt></Stmt></BkToCstmrStmt>") == (
            StatementDialect.CAMT053
        )

    def test_mt940(self, sample_mt940):
        assert detect_xml_dialect(sample_mt940) == StatementDialect.MT940

    def test_nbs(self, sample_nbs_xml):
        assert detect_xml_dialect(sample_nbs_xml) == StatementDialect.NBS_XML

    def test_unknown(self):
        assert detect_xml_dialect("<Invoice><Total>1</Total></Invoice>") == (
            StatementDialect.UNKNOWN
        )


class TestCamt053Parser:
    """Test ISO 20022 camt.053 parsing."""

    def test_header(self, sample_camt053):
        result = Camt053Parser().parse(sample_camt053)

        assert result.iban == "RS35260005601001611379"
        assert result.statement_number == "12"
        assert result.opening_balance == Decimal("5000.00")
        assert result.closing_balance == Decimal("5745.00")
        assert result.period_start == "2026-01-15"
        assert result.period_end == "2026-01-15"

    def test_entries(self, sample_camt053):
        result = Camt053Parser().parse(sample_camt053)
        incoming, outgoing, fee = result.lines

        assert incoming.direction == Direction.CREDIT
        assert incoming.amount == Decimal("1000.00")
        assert incoming.value_date == "2026-01-16"
        assert incoming.partner_name == "Acme d.o.o."
        assert incoming.counterparty_iban == "RS35160005080006054321"
        assert incoming.payment_reference == "INV-2026-0042"
        assert incoming.payment_purpose == "SUPP"
        assert incoming.description == "Payment INV-2026-0042"
        assert incoming.transaction_type == TransactionType.WIRE.value

        # Counterparty of outgoing money is the creditor
        assert outgoing.direction == Direction.DEBIT
        assert outgoing.partner_name == "Telekom Srbija"
        # NOTPROVIDED falls back to the structured creditor reference
        assert outgoing.payment_reference == "SUP-77"

        assert fee.amount == Decimal("5.00")
        assert fee.transaction_type == TransactionType.FEE.value
        assert fee.payment_reference is None

    def test_stated_balance_matches_movements(self, sample_camt053):
        result = Camt053Parser().parse(sample_camt053)
        movement = result.total_credit - result.total_debit
        assert result.opening_balance + movement == result.closing_balance

    def test_debit_balance_is_negative(self):
        content = """<Document xmlns="urn:iso:std:iso:20022:tech:xsd:camt.053.001.08">
<BkToCstmrStmt><Stmt><Id>1</Id>
<Bal><Tp><CdOrPrtry><Cd>CLBD</Cd></CdOrPrtry></Tp>
<Amt Ccy="EUR">12.50</Amt><CdtDbtInd>DBIT</CdtDbtInd></Bal>
</Stmt></BkToCstmrStmt></Document>"""
        result = Camt053Parser().parse(content)
        assert result.closing_balance == Decimal("-12.50")
        assert result.lines == []

    def test_malformed_xml(self):
        with pytest.raises(StatementParseError) as exc_info:
            Camt053Parser().parse("<BkToCstmrStmt><Stmt>")
        assert exc_info.value.error_code == ErrorCode.PARSE_ERROR

    def test_zero_amount_entry_skipped(self, sample_camt053):
        content = sample_camt053.replace(
            '<Amt Ccy="RSD">1000.00</Amt>', '<Amt Ccy="RSD">0.00</Amt>'
        )
        result = Camt053Parser().parse(content)

        assert [line.amount for line in result.lines] == [Decimal("250.00"), Decimal("5.00")]
        assert result.skipped_rows == 1


class TestNbsXmlParser:
    """Test NBS daily statement parsing."""

    def test_parse(self, sample_nbs_xml):
        result = NbsXmlParser().parse(sample_nbs_xml)

        assert result.statement_number == "7"
        assert result.iban == "260-0056010016113-79"
        assert result.opening_balance == Decimal("10000.00")
        assert result.closing_balance == Decimal("10700.00")
        assert result.transaction_count == 2
        # The item without any date is skipped, not guessed
        assert result.skipped_rows == 1

        incoming, outgoing = result.lines
        assert incoming.direction == Direction.CREDIT
        assert incoming.amount == Decimal("1000.00")
        assert incoming.payment_reference == "INV-2026-0042"
        assert incoming.partner_name == "Acme d.o.o."
        assert outgoing.direction == Direction.DEBIT
        assert outgoing.amount == Decimal("300.00")
        assert outgoing.description == "Struja decembar"

    def test_zero_amount_item_skipped(self, sample_nbs_xml):
        content = sample_nbs_xml.replace("<Iznos>300,00</Iznos>", "<Iznos>0,00</Iznos>")
        result = NbsXmlParser().parse(content)

        assert [line.amount for line in result.lines] == [Decimal("1000.00")]
        assert result.skipped_rows == 2


class TestMt940Parser:
    """Test SWIFT MT940 parsing."""

    def test_parse(self, sample_mt940):
        result = Mt940Parser().parse(sample_mt940)

        assert result.iban == "RS35260005601001611379"
        assert result.statement_number == "00012/001"
        assert result.opening_balance == Decimal("5000.00")
        assert result.closing_balance == Decimal("5750.00")
        assert result.period_start == "2026-01-14"
        assert result.period_end == "2026-01-15"

        incoming, outgoing = result.lines
        assert incoming.line_date == "2026-01-15"
        assert incoming.direction == Direction.CREDIT
        assert incoming.amount == Decimal("1000.00")
        assert incoming.payment_reference == "INV-2026-0042"
        assert incoming.description == "Acme d.o.o. payment INV-2026-0042"
        assert outgoing.direction == Direction.DEBIT
        assert outgoing.payment_reference is None
        assert outgoing.description == "Telekom Srbija"

    def test_zero_amount_line_skipped(self, sample_mt940):
        result = Mt940Parser().parse(sample_mt940.replace("D250,00", "D0,00"))

        [incoming] = result.lines
        assert incoming.amount == Decimal("1000.00")
        # The :86: of the dropped line does not leak onto the previous one
        assert incoming.description == "Acme d.o.o. payment INV-2026-0042"
        assert result.skipped_rows == 1

    def test_unreadable_lines(self):
        content = ":20:X\n:60F:C260114RSD0,00\n:61:garbage\n:62F:C260115RSD0,00\n"
        with pytest.raises(StatementParseError):
            Mt940Parser().parse(content)


class TestRouter:
    """Test parser routing."""

    def test_routes_xml_dialects(self, sample_camt053, sample_nbs_xml, sample_mt940):
        router = StatementParserRouter()
        assert router.parse(ImportFormat.XML, sample_camt053).format_name == "CAMT053"
        assert router.parse(ImportFormat.XML, sample_nbs_xml).format_name == "NBS_XML"
        assert router.parse(ImportFormat.XML, sample_mt940.encode()).format_name == "MT940"

    def test_routes_csv(self, sample_csv):
        result = StatementParserRouter().parse(ImportFormat.CSV, sample_csv.encode("utf-8-sig"))
        assert result.format_name == "CSV"
        assert result.transaction_count == 2

    def test_unknown_dialect(self):
        with pytest.raises(StatementParseError) as exc_info:
            StatementParserRouter().parse(ImportFormat.XML, b"<Invoice/>")
        assert exc_info.value.error_code == ErrorCode.UNKNOWN_XML_DIALECT

    def test_pdf_not_parseable(self):
        with pytest.raises(StatementParseError) as exc_info:
            StatementParserRouter().parse(ImportFormat.PDF, b"%PDF-1.4")
        assert exc_info.value.error_code == ErrorCode.UNRECOGNIZED_FORMAT
