"""
database/repository.py
Pure sqlite3 history store — zero external dependencies.

Layering: api reads through this, the reconciler writes through this.
This module imports core.models (data types) only, never the engine.

Transactions: every write opens its own connection and takes SQLite's write
lock up front (BEGIN IMMEDIATE), so the host existence check and the writes
that depend on it see the same database state. ``commit`` also reads the
previous snapshot under that lock, which serializes read-diff-write for a
host across processes sharing the file, not only across threads.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import timedelta
from typing import Callable, Dict, FrozenSet, Generator, Iterable, List, Optional, Tuple

from core.models import (
    ChangeRecord, HistoricalSeries, Host, SeriesPoint, Snapshot,
    format_ts, parse_ts,
)
from database.models import SCHEMA_SQL
from utils.constants import PortStatus
from utils.errors import PersistenceFailure
from utils.logger import get_logger

log = get_logger("portledger.store")

# stay well under SQLITE_MAX_VARIABLE_NUMBER on old builds
_IN_CHUNK = 500

_TICK = timedelta(microseconds=1)

Differ = Callable[[Snapshot, Optional[Snapshot]], Iterable[ChangeRecord]]


class HistoryStore:
    """Current-state + append-only history over sqlite3. Thread-safe: one
    connection per operation."""

    def __init__(self, db_path: str = "portledger.db", busy_timeout_s: float = 30.0):
        self._db_path = db_path
        self._busy_timeout_s = busy_timeout_s
        self._init_schema()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        # isolation_level=None: transactions are opened explicitly below
        conn = sqlite3.connect(
            self._db_path, timeout=self._busy_timeout_s,
            isolation_level=None, check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    def _init_schema(self) -> None:
        conn = self._connect()
        try:
            for stmt in SCHEMA_SQL.strip().split(";"):
                s = stmt.strip()
                if s:
                    conn.execute(s)
        finally:
            conn.close()

    @contextmanager
    def _tx(self) -> Generator[sqlite3.Connection, None, None]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except Exception:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    @contextmanager
    def _read(self, what: str) -> Generator[sqlite3.Connection, None, None]:
        """Read-only connection inside one deferred transaction, so multi
        statement reads see a single consistent state."""
        try:
            conn = self._connect()
        except sqlite3.Error as exc:
            raise PersistenceFailure(f"{what}: {exc}") from exc
        try:
            conn.execute("BEGIN")
            yield conn
        except sqlite3.Error as exc:
            log.error(f"{what} failed: {exc}")
            raise PersistenceFailure(f"{what}: {exc}") from exc
        finally:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            conn.close()

    # ── Reads ─────────────────────────────────────────────────────────────────

    def exists(self, ip: str, conn: Optional[sqlite3.Connection] = None) -> bool:
        """Is there a host row for ``ip``? Pass ``conn`` to check inside an
        open write transaction."""
        if conn is not None:
            return conn.execute(
                "SELECT 1 FROM hosts WHERE ip_address=?", (ip,)
            ).fetchone() is not None
        with self._read(f"exists({ip})") as c:
            return self.exists(ip, conn=c)

    def latest_snapshot(self, ip: str) -> Optional[Snapshot]:
        """Most recent persisted state for ``ip`` or None for a new host."""
        with self._read(f"latest_snapshot({ip})") as c:
            return self._load_snapshot(c, ip)

    def _load_snapshot(self, c: sqlite3.Connection, ip: str) -> Optional[Snapshot]:
        host = c.execute(
            "SELECT ip_address, hostname, last_observed_at FROM hosts WHERE ip_address=?",
            (ip,),
        ).fetchone()
        if host is None:
            return None
        rows = c.execute(
            "SELECT port, status FROM port_state WHERE host_ip=? ORDER BY port",
            (ip,),
        ).fetchall()
        return Snapshot.build(
            host["ip_address"],
            parse_ts(host["last_observed_at"]),
            {r["port"]: PortStatus(r["status"]) for r in rows},
            hostname=host["hostname"],
        )

    def series(self, ip: str, ports: Iterable[int]) -> HistoricalSeries:
        """(observed_at, status) history for the requested ports. Ports never
        observed come back as empty sequences."""
        wanted = sorted(set(ports))
        points: Dict[int, List[SeriesPoint]] = {p: [] for p in wanted}
        if not wanted:
            return HistoricalSeries(ip, points)

        with self._read(f"series({ip})") as c:
            for i in range(0, len(wanted), _IN_CHUNK):
                chunk = wanted[i:i + _IN_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = c.execute(
                    f"SELECT port, status, observed_at FROM port_history "
                    f"WHERE host_ip=? AND port IN ({placeholders}) "
                    f"ORDER BY port, observed_at, id",
                    (ip, *chunk),
                ).fetchall()
                for r in rows:
                    points[r["port"]].append(
                        SeriesPoint(parse_ts(r["observed_at"]), PortStatus(r["status"]))
                    )
        return HistoricalSeries(ip, points)

    def changes(self, ip: str, limit: int = 50) -> List[dict]:
        """Newest-first audit trail of change rows for ``ip``."""
        limit = max(1, int(limit))
        with self._read(f"changes({ip})") as c:
            rows = c.execute(
                "SELECT port, change_kind, observed_at FROM port_changes "
                "WHERE host_ip=? ORDER BY observed_at DESC, id DESC LIMIT ?",
                (ip, limit),
            ).fetchall()
        return [
            {"port": r["port"], "change": r["change_kind"], "observed_at": r["observed_at"]}
            for r in rows
        ]

    def list_hosts(self, limit: int = 100) -> List[dict]:
        limit = max(1, int(limit))
        with self._read("list_hosts") as c:
            rows = c.execute("""
                SELECT h.ip_address, h.hostname, h.first_seen_at, h.last_observed_at,
                       COUNT(s.port) AS ports,
                       SUM(CASE WHEN s.status='open' THEN 1 ELSE 0 END) AS open_ports
                FROM hosts h LEFT JOIN port_state s ON s.host_ip = h.ip_address
                GROUP BY h.ip_address
                ORDER BY h.last_observed_at DESC
                LIMIT ?
            """, (limit,)).fetchall()
        return [{**dict(r), "open_ports": r["open_ports"] or 0} for r in rows]

    def host_detail(self, ip: str, change_limit: int = 20) -> Optional[dict]:
        snap = self.latest_snapshot(ip)
        if snap is None:
            return None
        d = snap.to_dict()
        d["recent_changes"] = self.changes(ip, change_limit)
        return d

    def stats(self) -> dict:
        with self._read("stats") as c:
            def q(sql): return c.execute(sql).fetchone()[0] or 0
            return {
                "hosts":         q("SELECT COUNT(*) FROM hosts"),
                "tracked_ports": q("SELECT COUNT(*) FROM port_state"),
                "open_ports":    q("SELECT COUNT(*) FROM port_state WHERE status='open'"),
                "history_rows":  q("SELECT COUNT(*) FROM port_history"),
                "change_rows":   q("SELECT COUNT(*) FROM port_changes"),
                "snapshots":     q("SELECT COUNT(*) FROM snapshots"),
            }

    # ── Writes ────────────────────────────────────────────────────────────────

    def persist(self, snapshot: Snapshot, changes: Iterable[ChangeRecord]) -> None:
        """
        Record one snapshot atomically:
          (a) host row inserted if absent, else refreshed
          (b) current-state rows replaced by exactly the snapshot's ports
          (c) one history row per port in the snapshot
          (d) one change row per ChangeRecord
          (e) one snapshots row
        All or nothing; on any storage error the transaction is rolled back and
        PersistenceFailure is raised with the cause chained.
        """
        ip = snapshot.ip
        changes = sorted(changes)
        try:
            with self._tx() as c:
                self._write(c, snapshot, changes)
        except sqlite3.Error as exc:
            log.error(f"persist({ip}) rolled back: {exc}")
            raise PersistenceFailure(f"Could not persist snapshot for {ip}: {exc}", ip) from exc

    def commit(self, snapshot: Snapshot, differ: Differ,
               ) -> Tuple[Snapshot, Optional[Snapshot], FrozenSet[ChangeRecord]]:
        """
        Read the previous snapshot, diff against it and persist, all inside one
        write transaction. Two writers on the same file (CLI next to a running
        API) therefore never both see the same previous state.

        A snapshot not later than the stored one is re-stamped one microsecond
        after it, so a host's observation time strictly advances.

        Returns (snapshot as stored, previous or None, changes).
        """
        ip = snapshot.ip
        try:
            with self._tx() as c:
                previous = self._load_snapshot(c, ip)
                if previous is not None and snapshot.observed_at <= previous.observed_at:
                    snapshot = snapshot.restamped(previous.observed_at + _TICK)
                    log.debug(f"{ip}: observation time advanced to {format_ts(snapshot.observed_at)}")
                changes = frozenset(differ(snapshot, previous))
                self._write(c, snapshot, sorted(changes))
        except sqlite3.Error as exc:
            log.error(f"commit({ip}) rolled back: {exc}")
            raise PersistenceFailure(f"Could not persist snapshot for {ip}: {exc}", ip) from exc
        return snapshot, previous, changes

    def _write(self, c: sqlite3.Connection, snapshot: Snapshot,
               changes: List[ChangeRecord]) -> None:
        ts = format_ts(snapshot.observed_at)
        self._upsert_host(c, snapshot.host, ts)
        self._write_current_state(c, snapshot, ts)
        self._append_history(c, snapshot, ts)
        self._append_changes(c, snapshot.ip, changes, ts)
        self._log_snapshot(c, snapshot, changes, ts)
        log.debug(f"{snapshot.ip}: {len(snapshot.ports)} port(s), {len(changes)} change(s) @ {ts}")

    def _upsert_host(self, c: sqlite3.Connection, host: Host, ts: str) -> None:
        if self.exists(host.ip_address, conn=c):
            c.execute(
                "UPDATE hosts SET hostname=COALESCE(?, hostname), last_observed_at=? "
                "WHERE ip_address=?",
                (host.hostname, ts, host.ip_address),
            )
        else:
            c.execute(
                "INSERT INTO hosts(ip_address,hostname,first_seen_at,last_observed_at) "
                "VALUES(?,?,?,?)",
                (host.ip_address, host.hostname, ts, ts),
            )

    def _write_current_state(self, c: sqlite3.Connection, snapshot: Snapshot, ts: str) -> None:
        ip = snapshot.ip
        # by port set, not timestamp: two snapshots may share one
        c.execute("DELETE FROM port_state WHERE host_ip=?", (ip,))
        c.executemany("""
            INSERT INTO port_state(host_ip,port,status,observed_at) VALUES(?,?,?,?)
            ON CONFLICT(host_ip,port) DO UPDATE SET
              status=excluded.status,
              observed_at=excluded.observed_at
        """, [(ip, p, o.status.value, ts) for p, o in snapshot.ports.items()])

    def _append_history(self, c: sqlite3.Connection, snapshot: Snapshot, ts: str) -> None:
        c.executemany(
            "INSERT INTO port_history(host_ip,port,status,observed_at) VALUES(?,?,?,?)",
            [(snapshot.ip, p, o.status.value, ts) for p, o in sorted(snapshot.ports.items())],
        )

    def _append_changes(self, c: sqlite3.Connection, ip: str,
                        changes: List[ChangeRecord], ts: str) -> None:
        c.executemany(
            "INSERT INTO port_changes(host_ip,port,change_kind,observed_at) VALUES(?,?,?,?)",
            [(ip, ch.port, ch.kind.value, ts) for ch in changes],
        )

    def _log_snapshot(self, c: sqlite3.Connection, snapshot: Snapshot,
                      changes: List[ChangeRecord], ts: str) -> None:
        c.execute(
            "INSERT INTO snapshots(host_ip,observed_at,port_count,change_count) VALUES(?,?,?,?)",
            (snapshot.ip, ts, len(snapshot.ports), len(changes)),
        )

    def clear_all(self) -> None:
        with self._tx() as c:
            c.execute("DELETE FROM snapshots")
            c.execute("DELETE FROM port_changes")
            c.execute("DELETE FROM port_history")
            c.execute("DELETE FROM port_state")
            c.execute("DELETE FROM hosts")


__all__ = ["HistoryStore"]
