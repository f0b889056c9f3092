from __future__ import annotations

import sqlite3
from typing import Iterable


MIGRATIONS: list[Iterable[str]] = [
    (
        """
        CREATE TABLE IF NOT EXISTS nodes (
            path TEXT PRIMARY KEY,
            value_json TEXT NOT NULL,
            updated_at INTEGER NOT NULL DEFAULT (strftime('%s', 'now'))
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS revision (
            id INTEGER PRIMARY KEY CHECK (id = 1),
            value INTEGER NOT NULL
        )
        """,
        """
        INSERT OR IGNORE INTO revision(id, value) VALUES(1, 0)
        """,
        """
        CREATE INDEX IF NOT EXISTS idx_nodes_updated_at ON nodes(updated_at)
        """,
    ),
]


def apply_migrations(conn: sqlite3.Connection) -> None:
    """Apply the static set of DDL statements to the provided connection."""

    cursor = conn.cursor()
    for migration in MIGRATIONS:
        for statement in migration:
            cursor.execute(statement)
    conn.commit()
