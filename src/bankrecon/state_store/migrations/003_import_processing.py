"""
Migration 003: Add processing metadata to document_imports.

Records which parser handled the file, when processing finished, and the
statement created from it.
"""

import sqlite3

VERSION = 3
NAME = "import_processing"


def upgrade(conn: sqlite3.Connection) -> None:
    """Add processing columns to document_imports."""
    conn.execute("ALTER TABLE document_imports ADD COLUMN parser_used TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE document_imports ADD COLUMN processed_at TEXT DEFAULT NULL")
    conn.execute("ALTER TABLE document_imports ADD COLUMN statement_id INTEGER DEFAULT NULL")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_imports_status ON document_imports(tenant_id, status)"
    )


def downgrade(conn: sqlite3.Connection) -> None:
    """Remove processing columns (SQLite doesn't support DROP COLUMN easily)."""
    raise NotImplementedError("Downgrade not supported for this migration")
