"""
database/migrations.py - Pure stdlib sqlite3 migration manager.
Migrations only ever add indexes on top of SCHEMA_SQL; the tables
themselves are created by HistoryStore on first open.
"""
from __future__ import annotations
import sqlite3
from utils.logger import get_logger
log = get_logger("portledger.migrations")

# (version, description, index)
#   index (name, table, columns) → CREATE INDEX IF NOT EXISTS; () for none
MIGRATIONS = [
    (1, "initial_schema",                ()),
    (2, "index_port_history_observed",   ("ix_port_history_observed", "port_history", "observed_at")),
    (3, "index_port_changes_kind",       ("ix_port_changes_kind", "port_changes", "host_ip, change_kind")),
]

LATEST_VERSION = max(v for v, _, _ in MIGRATIONS)


def _ensure_version_table(conn: sqlite3.Connection) -> None:
    conn.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY, description TEXT, applied_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')))")
    conn.commit()


def get_version(db_path: str) -> int:
    conn = sqlite3.connect(db_path)
    try:
        _ensure_version_table(conn)
        r = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
        return r[0] or 0
    finally:
        conn.close()


def _apply(conn: sqlite3.Connection, index: tuple) -> None:
    if not index:
        return
    name, table, cols = index
    conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON {table}({cols})")


def migrate(db_path: str = "portledger.db") -> int:
    """Apply pending migrations; returns the resulting schema version."""
    cur = get_version(db_path)
    pending = [m for m in MIGRATIONS if m[0] > cur]
    if not pending:
        log.info(f"Schema v{cur} — up to date")
        return cur
    conn = sqlite3.connect(db_path)
    try:
        for v, desc, index in sorted(pending):
            log.info(f"Applying migration v{v}: {desc}")
            _apply(conn, index)
            conn.execute(
                "INSERT OR REPLACE INTO schema_version(version,description) VALUES(?,?)", (v, desc)
            )
            conn.commit()
            log.info(f"Migration v{v} applied")
    finally:
        conn.close()
    return LATEST_VERSION


if __name__ == "__main__":
    migrate()
