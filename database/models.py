"""
database/models.py
Pure sqlite3 schema definition — zero external dependencies.

Schema (IP address is the join key everywhere):
  hosts          — one row per host ever observed
  port_state     — current state: one row per (host, port), overwritten in place
  port_history   — append-only: one row per port per snapshot
  port_changes   — append-only audit of derived change records
  snapshots      — append-only: one row per persisted snapshot, even an empty one
  schema_version — migration tracking

Timestamps are UTC ISO-8601 text with microseconds ("...T12:00:00.000000Z"),
so lexical order is time order.

WAL mode, proper indexes, FK enforcement.
"""

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;
PRAGMA foreign_keys=ON;
PRAGMA cache_size=-20000;
PRAGMA temp_store=MEMORY;

CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER PRIMARY KEY,
    applied_at  TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    description TEXT
);

CREATE TABLE IF NOT EXISTS hosts (
    ip_address       TEXT PRIMARY KEY,
    hostname         TEXT,
    first_seen_at    TEXT NOT NULL,
    last_observed_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_hosts_last_observed ON hosts(last_observed_at);

CREATE TABLE IF NOT EXISTS port_state (
    host_ip     TEXT    NOT NULL REFERENCES hosts(ip_address) ON DELETE CASCADE,
    port        INTEGER NOT NULL CHECK (port BETWEEN 0 AND 65535),
    status      TEXT    NOT NULL,
    observed_at TEXT    NOT NULL,
    UNIQUE(host_ip, port)
);
CREATE INDEX IF NOT EXISTS ix_port_state_host ON port_state(host_ip, port);

CREATE TABLE IF NOT EXISTS port_history (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    host_ip     TEXT    NOT NULL REFERENCES hosts(ip_address) ON DELETE CASCADE,
    port        INTEGER NOT NULL CHECK (port BETWEEN 0 AND 65535),
    status      TEXT    NOT NULL,
    observed_at TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_port_history_lookup ON port_history(host_ip, port, observed_at);

CREATE TABLE IF NOT EXISTS port_changes (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    host_ip     TEXT    NOT NULL REFERENCES hosts(ip_address) ON DELETE CASCADE,
    port        INTEGER NOT NULL CHECK (port BETWEEN 0 AND 65535),
    change_kind TEXT    NOT NULL CHECK (change_kind IN ('added','removed','updated')),
    observed_at TEXT    NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_port_changes_host ON port_changes(host_ip, observed_at);

CREATE TABLE IF NOT EXISTS snapshots (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    host_ip     TEXT    NOT NULL REFERENCES hosts(ip_address) ON DELETE CASCADE,
    observed_at TEXT    NOT NULL,
    port_count  INTEGER NOT NULL,
    change_count INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_snapshots_host ON snapshots(host_ip, observed_at);
"""
