"""
SWIFT MT940 statement parser.

Tags used:
- :25:  account identification (IBAN or domestic number)
- :28C: statement / sequence number
- :60F: / :62F: opening and closing balance, e.g. C260115RSD1000,00
- :61:  statement line: YYMMDD[MMDD](C|D|RC|RD)[funds code]amount[type][ref]
- :86:  information to account owner for the preceding :61:
"""

import logging
import re
from datetime import date
from decimal import Decimal

from ..schemas.models import Direction, ErrorCode, ParsedLine, ParseResult, TransactionType
from .base import BaseStatementParser, StatementDialect, StatementParseError, clip, parse_amount
from .xml_parser import detect_xml_dialect

logger = logging.getLogger(__name__)

TAG_RE = re.compile(r"^:(\d{2}[A-Z]?):(.*)$")
BALANCE_RE = re.compile(r"^([CD])(\d{6})([A-Z]{3})([\d,.]+)")
LINE_RE = re.compile(
    r"^(?P<value_date>\d{6})(?P<entry_date>\d{4})?(?P<mark>R?[CD])[A-Z]?"
    r"(?P<amount>[\d,.]+)(?:[NFS][A-Z0-9]{3})?(?P<reference>[^/\s]*)"
)

NO_REFERENCE = "NONREF"


def _yymmdd(value: str) -> str:
    """Convert a SWIFT YYMMDD date to ISO format."""
    return date(2000 + int(value[0:2]), int(value[2:4]), int(value[4:6])).isoformat()


def split_tags(content: str) -> list[tuple[str, str]]:
    """
    Split MT940 text into (tag, value) pairs.

    Continuation lines are joined to the value of the preceding tag.
    """
    tags: list[tuple[str, str]] = []
    for raw_line in content.replace("\r\n", "\n").split("\n"):
        line = raw_line.rstrip()
        match = TAG_RE.match(line)
        if match:
            tags.append((match.group(1), match.group(2)))
        elif tags and line and not line.startswith("-}") and line != "-":
            tag, value = tags[-1]
            tags[-1] = (tag, f"{value}\n{line}")
    return tags


class Mt940Parser(BaseStatementParser):
    """Parse SWIFT MT940 customer statements."""

    @property
    def name(self) -> str:
        return StatementDialect.MT940.value

    def can_parse(self, content: str) -> bool:
        return detect_xml_dialect(content) == StatementDialect.MT940

    def parse(self, content: str) -> ParseResult:
        result = ParseResult(format_name=self.name)
        current: ParsedLine | None = None

        for tag, value in split_tags(content):
            if tag == "25":
                result.iban = value.strip()
            elif tag == "28C":
                result.statement_number = value.strip()
            elif tag in ("60F", "60M"):
                balance = self._balance(value)
                if balance is not None and result.opening_balance is None:
                    result.opening_balance, period_start = balance
                    result.period_start = period_start
            elif tag in ("62F", "62M"):
                balance = self._balance(value)
                if balance is not None:
                    result.stated_closing_balance, result.period_end = balance
            elif tag == "61":
                current = self._statement_line(value)
                if current is None:
                    result.skipped_rows += 1
                else:
                    result.lines.append(current)
            elif tag == "86" and current is not None and current.description is None:
                current.description = clip(value.replace("\n", " "))

        if not result.lines and ":61:" in content:
            raise StatementParseError("No readable :61: lines in MT940", ErrorCode.PARSE_ERROR)

        return result

    @staticmethod
    def _balance(value: str) -> tuple[Decimal, str] | None:
        match = BALANCE_RE.match(value.strip())
        if not match:
            return None
        amount = parse_amount(match.group(4))
        if amount is None:
            return None
        if match.group(1) == "D":
            amount = -amount
        try:
            return amount, _yymmdd(match.group(2))
        except ValueError:
            return None

    @staticmethod
    def _statement_line(value: str) -> ParsedLine | None:
        first_line = value.split("\n", 1)[0].strip()
        match = LINE_RE.match(first_line)
        if not match:
            logger.debug(f"Unreadable :61: line: {first_line}")
            return None

        amount = parse_amount(match.group("amount"))
        if not amount:
            return None
        try:
            line_date = _yymmdd(match.group("value_date"))
        except ValueError:
            return None

        # A reversed debit is money coming back in
        direction = Direction.CREDIT if match.group("mark") in ("C", "RD") else Direction.DEBIT
        reference = match.group("reference") or None
        if reference == NO_REFERENCE:
            reference = None

        return ParsedLine(
            line_date=line_date,
            value_date=line_date,
            amount=abs(amount),
            direction=direction,
            payment_reference=reference,
            transaction_type=TransactionType.WIRE.value,
        )
