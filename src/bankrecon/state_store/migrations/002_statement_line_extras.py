"""
Migration 002: Add structured-statement columns to statement_lines.

- value_date, counterparty_iban, transaction_type: carried by CAMT.053
- posting_claim: token of the caller currently posting the line
"""

import sqlite3

VERSION = 2
NAME = "statement_line_extras"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add extra statement line columns."""
    conn.execute("ALTER TABLE statement_lines ADD COLUMN value_date TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE statement_lines ADD COLUMN counterparty_iban TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE statement_lines ADD COLUMN transaction_type TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE statement_lines ADD COLUMN posting_claim TEXT DEFAULT NULL")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_lines_unposted "
        "ON statement_lines(statement_id, journal_entry_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove extra columns (SQLite doesn't support DROP COLUMN easily)."""
    raise NotImplementedError("Downgrade not supported for this migration")
