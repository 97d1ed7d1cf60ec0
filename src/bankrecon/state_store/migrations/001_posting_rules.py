"""
Migration 001: Add posting rule tables.

A posting rule is a tenant-defined template keyed by payment model code
(e.g. CUSTOMER_PAYMENT). Its ordered lines say which side is debited or
credited, from which account, and with which amount factor.
"""

import sqlite3

VERSION = 1
NAME = "posting_rules"


def upgrade(conn: sqlite3.Connection) -> None:
    """Create posting_rules and posting_rule_lines tables."""
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS posting_rules (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            payment_model_code TEXT NOT NULL,
            name TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL
        )
    """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS posting_rule_lines (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            posting_rule_id INTEGER NOT NULL,
            side TEXT NOT NULL,  -- DEBIT, CREDIT
            account_source TEXT NOT NULL DEFAULT 'FIXED',  -- FIXED, DYNAMIC
            account_code TEXT,
            dynamic_source TEXT,  -- BANK_ACCOUNT, PARTNER_RECEIVABLE, PARTNER_PAYABLE
            amount_factor TEXT NOT NULL DEFAULT '1',
            description_template TEXT,
            sort_order INTEGER NOT NULL DEFAULT 0,
            FOREIGN KEY (posting_rule_id) REFERENCES posting_rules(id) ON DELETE CASCADE
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_posting_rules_model "
        "ON posting_rules(tenant_id, payment_model_code)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove posting rule tables."""
    conn.execute("DROP TABLE IF EXISTS posting_rule_lines")
    conn.execute("DROP TABLE IF EXISTS posting_rules")
