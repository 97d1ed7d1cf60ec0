"""
Bank statement parsers.

Provides:
- StatementParserRouter: Chooses the parser for a file
- CSV parser with header-based column detection
- CAMT.053 and NBS XML parsers
- MT940 parser
- Base classes for custom parsers

Parsers are pure: they return a ParseResult or raise StatementParseError
and never write anything.
"""

from .base import (
    BaseStatementParser,
    StatementDialect,
    StatementParseError,
    normalize_date,
    parse_amount,
)
from .csv_parser import CsvStatementParser, resolve_columns, sniff_delimiter
from .mt940_parser import Mt940Parser
from .router import StatementParserRouter, decode_content
from .xml_parser import Camt053Parser, NbsXmlParser, detect_xml_dialect

__all__ = [
    "StatementParserRouter",
    "CsvStatementParser",
    "Camt053Parser",
    "NbsXmlParser",
    "Mt940Parser",
    "BaseStatementParser",
    "StatementParseError",
    "StatementDialect",
    "decode_content",
    "detect_xml_dialect",
    "normalize_date",
    "parse_amount",
    "resolve_columns",
    "sniff_delimiter",
]
