"""
Base statement parser interface and common helpers.
"""

import re
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from ..schemas.models import ErrorCode, ParseResult

# Max stored length of free-text fields
MAX_TEXT_LENGTH = 500

DATE_FORMATS = [
    "%Y-%m-%d",  # 2026-01-15
    "%d.%m.%Y",  # 15.01.2026
    "%d/%m/%Y",  # 15/01/2026
    "%Y%m%d",  # 20260115
]


class StatementDialect(str, Enum):
    """Statement dialect, stored as the import's parser_used."""

    CAMT053 = "CAMT053"
    MT940 = "MT940"
    NBS_XML = "NBS_XML"
    CSV = "CSV"
    UNKNOWN = "UNKNOWN"


class StatementParseError(Exception):
    """A statement could not be parsed. Nothing was written."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.PARSE_ERROR):
        self.error_code = error_code
        super().__init__(message)


def parse_amount(value: str | None) -> Decimal | None:
    """
    Parse a signed amount written with a decimal comma or point.

    Whitespace is removed. When both separators appear, the right-most one
    is the decimal separator and the other is a thousands separator.

    Returns:
        Signed Decimal, or None if the value is not a number
    """
    if value is None:
        return None
    cleaned = re.sub(r"\s", "", value).strip("\"'")
    if not cleaned:
        return None

    if "," in cleaned and "." in cleaned:
        if cleaned.rfind(",") > cleaned.rfind("."):
            cleaned = cleaned.replace(".", "").replace(",", ".")
        else:
            cleaned = cleaned.replace(",", "")
    else:
        cleaned = cleaned.replace(",", ".")

    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not amount.is_finite():
        return None
    return amount


def normalize_date(value: str | None) -> str | None:
    """Parse a date string to ISO format YYYY-MM-DD."""
    if not value:
        return None
    value = value.strip()
    # Timestamps like 2026-01-15T10:00:00
    if len(value) > 10 and value[4:5] == "-" and value[10:11] in ("T", " "):
        value = value[:10]
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None


def clip(value: str | None) -> str | None:
    """Trim a free-text value; empty becomes None."""
    if value is None:
        return None
    value = " ".join(value.split())
    return value[:MAX_TEXT_LENGTH] or None


class BaseStatementParser(ABC):
    """
    Base class for all statement parsers.

    Each parser handles one statement dialect and is all-or-nothing:
    it returns a complete ParseResult or raises StatementParseError.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Parser name, stored as the import's parser_used."""
        pass

    @abstractmethod
    def can_parse(self, content: str) -> bool:
        """Check whether content looks like this parser's dialect."""
        pass

    @abstractmethod
    def parse(self, content: str) -> ParseResult:
        """
        Parse statement content.

        Raises:
            StatementParseError: If the content cannot be parsed
        """
        pass
