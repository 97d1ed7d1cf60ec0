"""
XML statement parsers.

Supports:
- ISO 20022 CAMT.053 (BankToCustomerStatement), any namespace version
- NBS XML, the Serbian national daily statement (DnevniIzvod / Izvod)

Elements are looked up by local name so namespace versions do not matter.
"""

import logging
from decimal import Decimal
from xml.etree import ElementTree as ET

from ..schemas.models import Direction, ErrorCode, ParsedLine, ParseResult, TransactionType
from .base import (
    BaseStatementParser,
    StatementDialect,
    StatementParseError,
    clip,
    normalize_date,
    parse_amount,
)

logger = logging.getLogger(__name__)


def detect_xml_dialect(content: str) -> StatementDialect:
    """
    Detect the statement dialect from raw content markers.

    Order matters: an explicit camt.053 namespace wins, then MT940 tags,
    then the NBS root elements, then a bare BkToCstmrStmt.
    """
    if "camt.053.001" in content:
        return StatementDialect.CAMT053
    if ":20:" in content and ":60F:" in content:
        return StatementDialect.MT940
    if "<DnevniIzvod" in content or "<Izvod" in content or "<NalogZaPrenos" in content:
        return StatementDialect.NBS_XML
    if "<BkToCstmrStmt" in content or "<Stmt>" in content:
        return StatementDialect.CAMT053
    return StatementDialect.UNKNOWN


# Bank transaction code fragments -> transaction type, first hit wins
TRANSACTION_CODE_TYPES = [
    (("FEE", "CHRG"), TransactionType.FEE),
    (("SALA", "BONU"), TransactionType.SALARY),
    (("TAXS",), TransactionType.TAX),
    (("CARD", "POSD"), TransactionType.CARD),
]

# EndToEndId placeholder used when the payer gave no reference
NOT_PROVIDED = "NOTPROVIDED"


def _local(tag: str) -> str:
    """Strip the namespace from an element tag."""
    return tag.rsplit("}", 1)[-1]


def _find(elem: ET.Element | None, *path: str) -> ET.Element | None:
    """Follow a path of local names, each step matching the first descendant."""
    current = elem
    for name in path:
        if current is None:
            return None
        current = next(
            (child for child in current.iter() if child is not current and _local(child.tag) == name),
            None,
        )
    return current


def _find_all(elem: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in elem.iter() if _local(child.tag) == name]


def _child(elem: ET.Element | None, name: str) -> ET.Element | None:
    """First direct child with the given local name."""
    if elem is None:
        return None
    return next((child for child in elem if _local(child.tag) == name), None)


def _text(elem: ET.Element | None, *path: str) -> str | None:
    found = _find(elem, *path) if path else elem
    if found is None or found.text is None:
        return None
    return found.text.strip() or None


def _first_text(elem: ET.Element | None, *names: str) -> str | None:
    """Text of the first of several alternative descendants that has any."""
    for name in names:
        value = _text(elem, name)
        if value:
            return value
    return None


def _parse_xml(content: str) -> ET.Element:
    try:
        return ET.fromstring(content)
    except ET.ParseError as e:
        raise StatementParseError(f"Malformed XML: {e}", ErrorCode.PARSE_ERROR) from e


def classify_transaction_code(codes: list[str]) -> str:
    """Map ISO bank transaction codes to a coarse transaction type."""
    joined = " ".join(codes).upper()
    for fragments, transaction_type in TRANSACTION_CODE_TYPES:
        if any(fragment in joined for fragment in fragments):
            return transaction_type.value
    return TransactionType.WIRE.value


class Camt053Parser(BaseStatementParser):
    """Parse ISO 20022 camt.053 bank-to-customer statements."""

    @property
    def name(self) -> str:
        return StatementDialect.CAMT053.value

    def can_parse(self, content: str) -> bool:
        return detect_xml_dialect(content) == StatementDialect.CAMT053

    def parse(self, content: str) -> ParseResult:
        root = _parse_xml(content)
        stmt = _find(root, "Stmt")
        if stmt is None:
            stmt = root

        result = ParseResult(format_name=self.name)
        account = _child(stmt, "Acct")
        result.iban = _text(account, "IBAN") or _text(account, "Othr", "Id") or _text(root, "IBAN")
        result.statement_number = _first_text(stmt, "ElctrncSeqNb", "LglSeqNb") or _text(
            _child(stmt, "Id")
        )

        for bal in _find_all(stmt, "Bal"):
            code = _text(bal, "Tp", "Cd")
            amount = self._signed_amount(bal)
            if code == "OPBD":
                result.opening_balance = amount
            elif code == "CLBD":
                result.stated_closing_balance = amount

        period = _find(stmt, "FrToDt")
        if period is not None:
            result.period_start = normalize_date(_first_text(period, "FrDtTm", "FrDt"))
            result.period_end = normalize_date(_first_text(period, "ToDtTm", "ToDt"))

        for entry in _find_all(stmt, "Ntry"):
            line = self._parse_entry(entry)
            if line is None:
                result.skipped_rows += 1
            else:
                result.lines.append(line)

        logger.debug(
            f"Parsed camt.053 statement {result.statement_number}: {len(result.lines)} entries"
        )
        return result

    @staticmethod
    def _signed_amount(bal: ET.Element) -> Decimal | None:
        amount = parse_amount(_text(_child(bal, "Amt")))
        if amount is not None and _text(_child(bal, "CdtDbtInd")) == "DBIT":
            amount = -amount
        return amount

    def _parse_entry(self, entry: ET.Element) -> ParsedLine | None:
        amount = parse_amount(_text(_child(entry, "Amt")))
        indicator = _text(_child(entry, "CdtDbtInd"))
        booking = _child(entry, "BookgDt")
        line_date = normalize_date(_first_text(booking, "Dt", "DtTm"))
        # Zero-amount entries carry nothing to reconcile
        if not amount or line_date is None:
            return None

        direction = Direction.CREDIT if indicator == "CRDT" else Direction.DEBIT
        value_date = normalize_date(_first_text(_child(entry, "ValDt"), "Dt", "DtTm"))

        details = _find(entry, "NtryDtls")
        if details is None:
            details = entry
        remittance = _find(details, "RmtInf")
        description = ""
        if remittance is not None:
            description = " ".join(u.text.strip() for u in _find_all(remittance, "Ustrd") if u.text)

        # Counterparty is the creditor for outgoing money, the debtor for incoming
        parties = _find(details, "RltdPties")
        if direction == Direction.DEBIT:
            party, party_account = "Cdtr", "CdtrAcct"
        else:
            party, party_account = "Dbtr", "DbtrAcct"
        partner_name = _text(parties, party, "Nm")
        counterparty_iban = _text(parties, party_account, "IBAN")

        reference = _first_text(details, "EndToEndId", "InstrId")
        if reference == NOT_PROVIDED:
            reference = None
        if reference is None and remittance is not None:
            reference = _text(remittance, "CdtrRefInf", "Ref")

        tx_code = _find(entry, "BkTxCd")
        codes = []
        if tx_code is not None:
            codes = [c.text.strip() for c in tx_code.iter() if c.text and c.text.strip()]

        return ParsedLine(
            line_date=line_date,
            value_date=value_date,
            amount=abs(amount),
            direction=direction,
            description=clip(description),
            partner_name=partner_name,
            counterparty_iban=counterparty_iban,
            payment_reference=reference,
            payment_purpose=clip(_text(details, "Purp", "Cd")),
            transaction_type=classify_transaction_code(codes),
        )


class NbsXmlParser(BaseStatementParser):
    """Parse the Serbian NBS XML daily statement (dnevni izvod)."""

    # Smer/Tip values meaning outgoing money; "2" is the NBS debit code
    DEBIT_MARKERS = ("2", "rashod", "out")

    @property
    def name(self) -> str:
        return StatementDialect.NBS_XML.value

    def can_parse(self, content: str) -> bool:
        return detect_xml_dialect(content) == StatementDialect.NBS_XML

    def parse(self, content: str) -> ParseResult:
        root = _parse_xml(content)

        result = ParseResult(format_name=self.name)
        result.statement_number = _first_text(root, "BrojIzvoda", "RedniBroj")
        result.iban = _first_text(root, "BrojRacuna", "Racun")
        result.opening_balance = parse_amount(_text(root, "PrethodnoStanje"))
        result.stated_closing_balance = parse_amount(_text(root, "NovoStanje"))

        items = _find_all(root, "Stavka") or _find_all(root, "Transakcija")
        for item in items:
            line = self._parse_item(item)
            if line is None:
                result.skipped_rows += 1
            else:
                result.lines.append(line)

        if result.lines:
            dates = sorted(line.line_date for line in result.lines)
            result.period_start, result.period_end = dates[0], dates[-1]

        return result

    def _parse_item(self, item: ET.Element) -> ParsedLine | None:
        value_date = normalize_date(_text(item, "DatumValute"))
        line_date = normalize_date(_text(item, "Datum")) or value_date
        amount = parse_amount(_text(item, "Iznos"))
        if line_date is None or not amount:
            return None

        marker = (_first_text(item, "Smer", "Tip") or "").lower()
        direction = (
            Direction.DEBIT
            if any(token in marker for token in self.DEBIT_MARKERS)
            else Direction.CREDIT
        )

        return ParsedLine(
            line_date=line_date,
            value_date=value_date,
            amount=abs(amount),
            direction=direction,
            description=clip(_first_text(item, "Opis", "Svrha")),
            partner_name=_first_text(item, "Nalogodavac", "Naziv"),
            partner_account=_first_text(item, "RacunNalogodavca", "Racun"),
            payment_reference=_text(item, "PozivNaBroj"),
            payment_purpose=clip(_text(item, "Svrha")),
            transaction_type=TransactionType.WIRE.value,
        )
