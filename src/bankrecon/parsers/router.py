"""
Statement parser router - chooses the parser for an uploaded file.
"""

import logging

from ..schemas.models import ErrorCode, ImportFormat, ParseResult
from .base import BaseStatementParser, StatementDialect, StatementParseError
from .csv_parser import CsvStatementParser
from .mt940_parser import Mt940Parser
from .xml_parser import Camt053Parser, NbsXmlParser, detect_xml_dialect

logger = logging.getLogger(__name__)

# Serbian bank exports are often Windows-1250 rather than UTF-8
FALLBACK_ENCODING = "cp1250"


def decode_content(raw_content: bytes | str) -> str:
    """Decode uploaded bytes as UTF-8 (BOM tolerated), else Windows-1250."""
    if isinstance(raw_content, str):
        return raw_content
    try:
        return raw_content.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw_content.decode(FALLBACK_ENCODING, errors="replace")


class StatementParserRouter:
    """
    Routes parsing to the appropriate dialect.

    - CSV files go to the header-detecting CSV parser
    - XML files are sniffed: CAMT.053, MT940 text, NBS XML
    - Anything else is not parseable
    """

    def __init__(self, parsers: list[BaseStatementParser] | None = None):
        """Initialize with default parsers, keyed by name."""
        self.parsers: dict[str, BaseStatementParser] = {
            parser.name: parser
            for parser in (
                parsers or [Camt053Parser(), Mt940Parser(), NbsXmlParser(), CsvStatementParser()]
            )
        }

    def parse(
        self,
        file_format: ImportFormat,
        raw_content: bytes | str,
        context: dict | None = None,
    ) -> ParseResult:
        """
        Parse an uploaded statement.

        Args:
            file_format: Format derived from the file extension
            raw_content: File content
            context: Optional identifiers (tenant_id, import_id) for log lines

        Returns:
            ParseResult with ordered lines and totals

        Raises:
            StatementParseError: With UNRECOGNIZED_FORMAT, UNKNOWN_XML_DIALECT,
                MISSING_COLUMNS, EMPTY_STATEMENT or PARSE_ERROR
        """
        context = context or {}
        content = decode_content(raw_content)

        if file_format == ImportFormat.CSV:
            parser = self.parsers[StatementDialect.CSV.value]
        elif file_format == ImportFormat.XML:
            dialect = detect_xml_dialect(content)
            if dialect == StatementDialect.UNKNOWN:
                raise StatementParseError(
                    "Unknown statement dialect", ErrorCode.UNKNOWN_XML_DIALECT
                )
            parser = self.parsers[dialect.value]
        else:
            raise StatementParseError(
                f"No parser for format {file_format.value}", ErrorCode.UNRECOGNIZED_FORMAT
            )

        result = parser.parse(content)
        logger.info(
            f"Parsed {parser.name} statement (import {context.get('import_id', '-')}): "
            f"{result.transaction_count} lines, {result.skipped_rows} skipped"
        )
        return result
