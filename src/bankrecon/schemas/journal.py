"""
Journal entry lines and balance validation (SSOT).

Rules:
- Every line carries exactly one non-zero side (debit XOR credit)
- Amounts are non-negative and rounded to cents
- An entry needs at least two lines
- Sum of debits must equal sum of credits
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class JournalError(Exception):
    """Base exception for journal entry errors."""

    pass


class ImbalancedPostingError(JournalError):
    """The journal primitive refused an unbalanced or malformed line set."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Journal entry rejected: {'; '.join(errors)}")


def to_cents(value: Decimal) -> Decimal:
    """Round an amount to two decimal places."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class JournalLine:
    """Single ledger posting line."""

    account_code: str
    debit: Decimal = Decimal("0.00")
    credit: Decimal = Decimal("0.00")
    description: str = ""
    sort_order: int = 0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "account_code": self.account_code,
            "debit": str(to_cents(self.debit)),
            "credit": str(to_cents(self.credit)),
            "description": self.description,
            "sort_order": self.sort_order,
        }


def validate_journal_lines(lines: list[JournalLine]) -> list[str]:
    """
    Validate a journal line set before it is persisted.

    Args:
        lines: Lines of a single journal entry

    Returns:
        List of validation errors (empty if valid)
    """
    errors: list[str] = []

    if len(lines) < 2:
        errors.append(f"at least two lines are required, got: {len(lines)}")
        return errors

    for i, line in enumerate(lines):
        prefix = f"lines[{i}]"

        if not line.account_code:
            errors.append(f"{prefix}.account_code is required")

        if line.debit < 0 or line.credit < 0:
            errors.append(f"{prefix} amounts must be non-negative")
        elif line.debit > 0 and line.credit > 0:
            errors.append(f"{prefix} cannot carry both debit and credit")
        elif line.debit == 0 and line.credit == 0:
            errors.append(f"{prefix} has no amount")

    total_debit = sum((to_cents(line.debit) for line in lines), Decimal("0"))
    total_credit = sum((to_cents(line.credit) for line in lines), Decimal("0"))
    if total_debit != total_credit:
        errors.append(f"debits {total_debit} do not equal credits {total_credit}")

    if errors:
        logger.debug(f"Journal validation failed: {errors}")

    return errors
