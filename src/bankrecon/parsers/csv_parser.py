"""
Delimited statement parser with header-based column detection.

Banks export CSV with varying column names (English or Serbian) and
delimiters. Column roles are resolved by case-insensitive substring match
against the header row; the first header matching a role wins.
"""

import csv
import io
import logging

from ..schemas.models import Direction, ErrorCode, ParsedLine, ParseResult
from .base import (
    BaseStatementParser,
    StatementDialect,
    StatementParseError,
    clip,
    normalize_date,
    parse_amount,
)

logger = logging.getLogger(__name__)

DELIMITERS = [",", ";", "\t", "|"]

# Role -> header substrings
COLUMN_KEYWORDS = {
    "date": ("date", "datum"),
    "description": ("desc", "opis"),
    "amount": ("amount", "iznos"),
    "direction": ("direction", "smer", "type", "tip"),
    "partner_name": ("partner", "nalogodavac", "primalac"),
    "partner_account": ("account", "racun"),
    "payment_reference": ("reference", "poziv"),
    "payment_purpose": ("purpose", "svrha"),
}

DEBIT_TOKENS = ("debit", "rashod", "out")


def sniff_delimiter(header_line: str) -> str:
    """Pick the candidate delimiter occurring most often in the header."""
    best, best_count = ",", 0
    for delimiter in DELIMITERS:
        count = header_line.count(delimiter)
        if count > best_count:
            best, best_count = delimiter, count
    return best


def resolve_columns(header: list[str]) -> dict[str, int]:
    """Map each role to the index of the first header containing one of its keywords."""
    normalized = [h.strip().lower() for h in header]
    columns: dict[str, int] = {}
    for role, keywords in COLUMN_KEYWORDS.items():
        for index, name in enumerate(normalized):
            if any(keyword in name for keyword in keywords):
                columns[role] = index
                break
    return columns


def _cell(row: list[str], columns: dict[str, int], role: str) -> str | None:
    index = columns.get(role)
    if index is None or index >= len(row):
        return None
    return row[index].strip() or None


def resolve_direction(direction_value: str | None, raw_amount_negative: bool) -> Direction:
    """Direction from an explicit column value, else from the amount sign."""
    if direction_value is None:
        return Direction.DEBIT if raw_amount_negative else Direction.CREDIT
    value = direction_value.strip().lower()
    if any(token in value for token in DEBIT_TOKENS) or value.startswith("-"):
        return Direction.DEBIT
    return Direction.CREDIT


class CsvStatementParser(BaseStatementParser):
    """Parse delimited bank statement exports."""

    @property
    def name(self) -> str:
        return StatementDialect.CSV.value

    def can_parse(self, content: str) -> bool:
        first_line = content.lstrip("\ufeff").strip().split("\n", 1)[0].lower()
        columns = resolve_columns(first_line.split(sniff_delimiter(first_line)))
        return "date" in columns and "amount" in columns

    def parse(self, content: str) -> ParseResult:
        text = content.lstrip("\ufeff").strip()
        if not text:
            raise StatementParseError("CSV content is empty", ErrorCode.EMPTY_STATEMENT)

        header_line = text.split("\n", 1)[0]
        delimiter = sniff_delimiter(header_line)
        rows = list(csv.reader(io.StringIO(text), delimiter=delimiter))
        header, data_rows = rows[0], rows[1:]

        columns = resolve_columns(header)
        missing = [role for role in ("date", "amount") if role not in columns]
        if missing:
            raise StatementParseError(
                f"Missing required column(s): {', '.join(missing)}", ErrorCode.MISSING_COLUMNS
            )

        result = ParseResult(format_name=self.name)

        for row_number, row in enumerate(data_rows, start=2):
            if not any(cell.strip() for cell in row):
                continue

            line_date = normalize_date(_cell(row, columns, "date"))
            raw_amount = parse_amount(_cell(row, columns, "amount"))
            if line_date is None or raw_amount is None or raw_amount == 0:
                logger.debug(f"Skipping CSV row {row_number}: unusable date or amount")
                result.skipped_rows += 1
                continue

            direction_value = None
            if "direction" in columns:
                direction_value = _cell(row, columns, "direction") or ""

            result.lines.append(
                ParsedLine(
                    line_date=line_date,
                    amount=abs(raw_amount),
                    direction=resolve_direction(direction_value, raw_amount < 0),
                    description=clip(_cell(row, columns, "description")),
                    partner_name=_cell(row, columns, "partner_name"),
                    partner_account=_cell(row, columns, "partner_account"),
                    payment_reference=_cell(row, columns, "payment_reference"),
                    payment_purpose=clip(_cell(row, columns, "payment_purpose")),
                )
            )

        if not result.lines:
            raise StatementParseError(
                f"No valid rows found ({result.skipped_rows} skipped)", ErrorCode.EMPTY_STATEMENT
            )

        if result.skipped_rows:
            logger.info(f"CSV parsed with {result.skipped_rows} skipped rows")

        dates = sorted(line.line_date for line in result.lines)
        result.period_start, result.period_end = dates[0], dates[-1]
        return result
