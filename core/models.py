"""
core/models.py
Point-in-time port observations and what is derived from them.

  Host               — IP address (canonical key) + informational hostname
  PortObservation    — one port's status inside one Snapshot
  Snapshot           — one host's ports at one instant; immutable
  ChangeRecord       — classified difference for one port between two Snapshots
  HistoricalSeries   — per-port time-ordered (observed_at, status) pairs
  TargetResult       — one requested target's outcome inside a reconciliation
  ReconciliationResult — every TargetResult of one call, keyed by target

No imports of database / api (clean layering).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from utils.constants import (
    ChangeKind, PortStatus, TargetStage, TERMINAL_STAGES, PORT_MIN, PORT_MAX,
)
from utils.errors import PortLedgerError


TS_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def format_ts(ts: datetime) -> str:
    """UTC ISO-8601 with microseconds; sorts lexically in time order."""
    return ts.astimezone(timezone.utc).strftime(TS_FORMAT)


def parse_ts(raw: str) -> datetime:
    return datetime.strptime(raw, TS_FORMAT).replace(tzinfo=timezone.utc)


# ─── Observations ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Host:
    ip_address: str
    hostname:   Optional[str] = None

    def to_dict(self) -> dict:
        return {"ip_address": self.ip_address, "hostname": self.hostname}


@dataclass(frozen=True)
class PortObservation:
    port:   int
    status: PortStatus

    def __post_init__(self):
        if not isinstance(self.port, int) or not (PORT_MIN <= self.port <= PORT_MAX):
            raise ValueError(f"Port {self.port!r} out of valid range [{PORT_MIN}, {PORT_MAX}]")
        if not isinstance(self.status, PortStatus):
            object.__setattr__(self, "status", PortStatus(self.status))


@dataclass(frozen=True)
class Snapshot:
    """
    One host's port state at ``observed_at``.

    ``ports`` is exposed as a read-only mapping port → PortObservation.
    Build with ``Snapshot.build`` from a plain ``{port: status}`` dict.
    """

    host:        Host
    observed_at: datetime
    ports:       Mapping[int, PortObservation] = field(default_factory=dict)

    def __post_init__(self):
        if self.observed_at.tzinfo is None:
            raise ValueError("observed_at must be timezone-aware")
        object.__setattr__(self, "ports", MappingProxyType(dict(self.ports)))

    @classmethod
    def build(cls, ip: str, observed_at: datetime,
              ports: Mapping[int, "PortStatus | str"],
              hostname: Optional[str] = None) -> "Snapshot":
        obs = {p: PortObservation(p, PortStatus(s)) for p, s in ports.items()}
        return cls(Host(ip, hostname), observed_at, obs)

    @property
    def ip(self) -> str:
        return self.host.ip_address

    def status_map(self) -> Dict[int, PortStatus]:
        return {p: o.status for p, o in self.ports.items()}

    def restamped(self, observed_at: datetime) -> "Snapshot":
        return replace(self, observed_at=observed_at)

    def to_dict(self) -> dict:
        return {
            "host":        self.host.to_dict(),
            "observed_at": format_ts(self.observed_at),
            "ports":       {str(p): o.status.value for p, o in sorted(self.ports.items())},
        }


@dataclass(frozen=True, order=True)
class ChangeRecord:
    port: int
    kind: ChangeKind

    def to_dict(self) -> dict:
        return {"port": self.port, "change": self.kind.value}


def changes_by_port(changes: Iterable[ChangeRecord]) -> Dict[int, ChangeKind]:
    return {c.port: c.kind for c in changes}


# ─── History projection ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class SeriesPoint:
    observed_at: datetime
    status:      PortStatus

    def to_dict(self) -> dict:
        return {"time": format_ts(self.observed_at), "status": self.status.value}


@dataclass(frozen=True)
class HistoricalSeries:
    """Per-port history for one host. Points are in insertion order, which
    the store guarantees is ascending ``observed_at``."""

    ip:     str
    points: Mapping[int, Tuple[SeriesPoint, ...]] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(
            self, "points",
            MappingProxyType({p: tuple(v) for p, v in self.points.items()}),
        )

    def for_port(self, port: int) -> Tuple[SeriesPoint, ...]:
        return self.points.get(port, ())

    def latest(self, port: int) -> Optional[SeriesPoint]:
        """Max observed_at; on equal timestamps the later-inserted point wins."""
        best: Optional[SeriesPoint] = None
        for pt in self.for_port(port):
            if best is None or pt.observed_at >= best.observed_at:
                best = pt
        return best

    def to_dict(self) -> dict:
        return {
            "ip": self.ip,
            "ports": [
                {"port_number": p, "history": [pt.to_dict() for pt in pts]}
                for p, pts in sorted(self.points.items())
            ],
        }


# ─── Reconciliation outcome ───────────────────────────────────────────────────

@dataclass
class TargetResult:
    """Mutable while the owning pipeline runs; final once ``stage`` is terminal."""

    target:   str
    stage:    TargetStage = TargetStage.PENDING
    snapshot: Optional[Snapshot] = None
    changes:  frozenset = frozenset()
    series:   Optional[HistoricalSeries] = None
    error:    Optional[PortLedgerError] = None
    failed_at: Optional[TargetStage] = None
    previous_seen: bool = False

    @property
    def ok(self) -> bool:
        return self.stage is TargetStage.REPORTED

    def advance(self, stage: TargetStage) -> None:
        if self.stage in TERMINAL_STAGES:
            raise ValueError(f"{self.target}: already {self.stage.value}")
        self.stage = stage

    def fail(self, error: PortLedgerError) -> None:
        self.failed_at = self.stage
        self.stage = TargetStage.FAILED
        self.error = error

    def to_dict(self) -> dict:
        d: dict = {"target": self.target, "status": self.stage.value}
        if self.snapshot is not None:
            d["host"] = self.snapshot.host.to_dict()
            d["scan_time"] = format_ts(self.snapshot.observed_at)
            d["ports"] = {str(p): o.status.value
                          for p, o in sorted(self.snapshot.ports.items())}
        if self.ok:
            d["changes"] = {str(c.port): c.kind.value for c in sorted(self.changes)}
            d["first_observation"] = not self.previous_seen
            d["port_history"] = self.series.to_dict()["ports"] if self.series else []
        if self.error is not None:
            d["error"] = self.error.to_dict()
            d["failed_at"] = self.failed_at.value if self.failed_at else None
        return d


@dataclass
class ReconciliationResult:
    results: Dict[str, TargetResult] = field(default_factory=dict)

    def __getitem__(self, target: str) -> TargetResult:
        return self.results[target]

    def __iter__(self):
        return iter(self.results.values())

    def __len__(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> List[TargetResult]:
        return [r for r in self if r.ok]

    @property
    def failed(self) -> List[TargetResult]:
        return [r for r in self if r.stage is TargetStage.FAILED]

    def to_dict(self) -> dict:
        return {
            "scan_results": [r.to_dict() for r in self],
            "summary": {
                "targets":   len(self),
                "succeeded": len(self.succeeded),
                "failed":    len(self.failed),
            },
        }


__all__ = [
    "Host", "PortObservation", "Snapshot", "ChangeRecord", "SeriesPoint",
    "HistoricalSeries", "TargetResult", "ReconciliationResult",
    "changes_by_port", "format_ts", "parse_ts", "TS_FORMAT",
]
