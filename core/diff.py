"""
core/diff.py
Pure snapshot comparison.

  diff(current, previous)  → frozenset[ChangeRecord]
  latest(snapshots)        → deterministic "most recent" pick

Classification per port:
  only in current                  → added
  in both, status differs          → updated
  only in previous                 → removed
  in both, same status             → (nothing)
"""

from __future__ import annotations

from typing import Iterable, Optional

from core.models import ChangeRecord, Snapshot
from utils.constants import ChangeKind


def diff(current: Snapshot, previous: Optional[Snapshot]) -> frozenset:
    """Compare ``current`` against ``previous`` for the same host.

    With no previous snapshot every current port is ``added``.
    """
    now = current.status_map()
    before = previous.status_map() if previous is not None else {}

    changes = set()
    for port, status in now.items():
        if port not in before:
            changes.add(ChangeRecord(port, ChangeKind.ADDED))
        elif before[port] != status:
            changes.add(ChangeRecord(port, ChangeKind.UPDATED))
    for port in before.keys() - now.keys():
        changes.add(ChangeRecord(port, ChangeKind.REMOVED))
    return frozenset(changes)


def latest(snapshots: Iterable[Snapshot]) -> Optional[Snapshot]:
    """Snapshot with the maximum observed_at.

    On equal timestamps the one later in the iteration wins; the history
    store yields rows in insertion order, so that is the last one written.
    """
    best: Optional[Snapshot] = None
    for s in snapshots:
        if best is None or s.observed_at >= best.observed_at:
            best = s
    return best


def summarize(changes: Iterable[ChangeRecord]) -> dict:
    """Count per change kind, e.g. {"added": 2, "removed": 0, "updated": 1}."""
    counts = {k.value: 0 for k in ChangeKind}
    for c in changes:
        counts[c.kind.value] += 1
    return counts


__all__ = ["diff", "latest", "summarize"]
