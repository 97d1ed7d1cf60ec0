"""
Posting rules: turn a statement line into journal lines.

Resolution is a two-step choice. If the tenant has an active rule for the
payment model, its lines are expanded; otherwise the fixed two-line
skeleton for the line direction is used:

    credit (money in):  Dr bank account        / Cr receivable control
    debit (money out):  Dr payable control     / Cr bank account
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from ..schemas.journal import JournalError, JournalLine, to_cents
from ..schemas.models import Direction
from ..state_store import PostingRuleLineRecord, PostingRuleRecord

logger = logging.getLogger(__name__)

SIDE_DEBIT = "DEBIT"
SIDE_CREDIT = "CREDIT"
SOURCE_FIXED = "FIXED"
SOURCE_DYNAMIC = "DYNAMIC"

DYNAMIC_BANK_ACCOUNT = "BANK_ACCOUNT"
DYNAMIC_PARTNER_RECEIVABLE = "PARTNER_RECEIVABLE"
DYNAMIC_PARTNER_PAYABLE = "PARTNER_PAYABLE"


class PostingRuleError(JournalError):
    """A posting rule line cannot be resolved to an account."""

    pass


@dataclass
class PostingContext:
    """Account codes and text available to rule templates."""

    bank_account_code: str
    receivable_account_code: str
    payable_account_code: str
    description: str = ""
    partner: str = ""
    reference: str = ""

    def account_for(self, dynamic_source: str | None) -> str:
        """Resolve a DYNAMIC account source to a concrete code."""
        codes = {
            DYNAMIC_BANK_ACCOUNT: self.bank_account_code,
            DYNAMIC_PARTNER_RECEIVABLE: self.receivable_account_code,
            DYNAMIC_PARTNER_PAYABLE: self.payable_account_code,
        }
        if dynamic_source not in codes:
            raise PostingRuleError(f"Unknown dynamic account source: {dynamic_source}")
        return codes[dynamic_source]

    def render(self, template: str | None, default: str) -> str:
        """Fill {description}, {partner} and {reference} placeholders."""
        if not template:
            return default
        return (
            template.replace("{description}", self.description)
            .replace("{partner}", self.partner)
            .replace("{reference}", self.reference)
        )


def fallback_lines(
    direction: Direction, amount: Decimal, context: PostingContext, description: str
) -> list[JournalLine]:
    """Fixed two-line skeleton used when no rule applies."""
    amount = to_cents(amount)
    if direction == Direction.CREDIT:
        debit_code, credit_code = context.bank_account_code, context.receivable_account_code
    else:
        debit_code, credit_code = context.payable_account_code, context.bank_account_code

    return [
        JournalLine(account_code=debit_code, debit=amount, description=description, sort_order=0),
        JournalLine(account_code=credit_code, credit=amount, description=description, sort_order=1),
    ]


def _rule_line(
    rule_line: PostingRuleLineRecord, amount: Decimal, context: PostingContext, description: str
) -> JournalLine:
    if rule_line.account_source == SOURCE_DYNAMIC:
        account_code = context.account_for(rule_line.dynamic_source)
    elif rule_line.account_code:
        account_code = rule_line.account_code
    else:
        raise PostingRuleError("FIXED rule line has no account code")

    value = to_cents(amount * rule_line.amount_factor)
    line = JournalLine(
        account_code=account_code,
        description=context.render(rule_line.description_template, description),
        sort_order=rule_line.sort_order,
    )
    if rule_line.side == SIDE_DEBIT:
        line.debit = value
    elif rule_line.side == SIDE_CREDIT:
        line.credit = value
    else:
        raise PostingRuleError(f"Unknown rule line side: {rule_line.side}")
    return line


def resolve_posting_lines(
    rule: PostingRuleRecord | None,
    direction: Direction,
    amount: Decimal,
    context: PostingContext,
    description: str,
) -> list[JournalLine]:
    """
    Build journal lines for a statement line.

    Args:
        rule: Active rule for the payment model, or None
        direction: Line direction (picks the fallback skeleton)
        amount: Non-negative line amount
        context: Account codes and template values
        description: Default line description

    Returns:
        Journal lines; balance is checked by the journal writer
    """
    if rule is None or not rule.lines:
        return fallback_lines(direction, amount, context, description)

    logger.debug(f"Using posting rule {rule.payment_model_code} ({rule.name})")
    return [_rule_line(rl, amount, context, description) for rl in rule.lines]
