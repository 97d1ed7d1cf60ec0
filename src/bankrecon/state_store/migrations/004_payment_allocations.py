"""
Migration 004: Partial payment allocation.

- amount_paid on invoices / supplier_invoices: settled part of the total
- statement_line_allocations: one row per (line, document) share of a payment
"""

import sqlite3

VERSION = 4
NAME = "payment_allocations"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add amount_paid columns and the allocations table."""
    conn.execute("ALTER TABLE invoices ADD COLUMN amount_paid TEXT NOT NULL DEFAULT '0'")
    conn.execute("ALTER TABLE supplier_invoices ADD COLUMN amount_paid TEXT NOT NULL DEFAULT '0'")

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS statement_line_allocations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            tenant_id TEXT NOT NULL,
            statement_line_id INTEGER NOT NULL,
            invoice_id INTEGER,
            supplier_invoice_id INTEGER,
            amount TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (statement_line_id) REFERENCES statement_lines(id) ON DELETE CASCADE,
            FOREIGN KEY (invoice_id) REFERENCES invoices(id),
            FOREIGN KEY (supplier_invoice_id) REFERENCES supplier_invoices(id)
        )
    """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_allocations_line "
        "ON statement_line_allocations(statement_line_id)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove allocation support (SQLite doesn't support DROP COLUMN easily)."""
    raise NotImplementedError("Downgrade not supported for this migration")
