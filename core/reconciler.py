"""
core/reconciler.py
Scan reconciliation: probe → parse → diff against history → persist → report.

Per target the pipeline walks

    pending → collected → diffed → persisted → reported
                 ↘          ↘          ↘          ↘
                              failed

and stops in ``reported`` or ``failed``. One target failing never touches its
siblings. Nothing is retried; callers resubmit.

Concurrency:
  • targets run concurrently, bounded by an asyncio.Semaphore per call
  • store calls are blocking and run on a dedicated thread pool
  • latest → diff → persist for one IP runs under that IP's lock
    (HostLocks), so two reconciliations of the same host never interleave
  • the store's commit() also does the read, diff and write in one write
    transaction, which covers other processes on the same database file
  • no store transaction is open while the prober runs

The store is duck-typed (commit / series); core never imports database.
"""

from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from core.diff import diff, summarize
from core.models import ReconciliationResult, Snapshot, TargetResult
from core.observation_parser import parse_observation
from utils.constants import MAX_TARGETS_PER_REQUEST, TargetStage
from utils.errors import PortLedgerError
from utils.logger import get_logger
from utils.validators import validate_targets

log = get_logger("portledger.reconciler")


class HostLocks:
    """Keyed mutex table: one lock per IP, dropped when nobody holds it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[str, list] = {}   # ip → [lock, holders+waiters]

    @contextmanager
    def hold(self, ip: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(ip, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[ip]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class Reconciler:
    """
    Orchestrates one reconciliation call over a batch of targets.

    ``probe`` needs ``async probe(target, timeout_s=None) -> bytes`` and a
    ``profile`` attribute (TimingProfile) unless ``max_concurrent`` is given.
    ``store`` needs commit(snapshot, differ) and series(ip, ports). commit
    calls ``differ(snapshot, previous)`` inside its write transaction and
    returns (stored snapshot, previous, changes).
    """

    def __init__(
        self,
        probe,
        store,
        max_concurrent: Optional[int] = None,
        max_targets: int = MAX_TARGETS_PER_REQUEST,
        parser: Callable[[bytes, str], Snapshot] = parse_observation,
        locks: Optional[HostLocks] = None,
    ):
        self._probe = probe
        self._store = store
        self._parse = parser
        self._max_targets = max_targets
        self._locks = locks or HostLocks()
        if max_concurrent is None:
            max_concurrent = probe.profile.max_concurrent_targets
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")
        self._max_concurrent = max_concurrent
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent, thread_name_prefix="portledger-store",
        )

    # ── Public API ────────────────────────────────────────────────────────────

    async def reconcile(
        self, targets: Iterable[str], timeout_s: Optional[float] = None,
    ) -> ReconciliationResult:
        """
        Reconcile every target. Raises ValidationFailure before doing any work
        if the batch is malformed; every later failure is per target.
        """
        batch = validate_targets(targets, self._max_targets)
        sem = asyncio.Semaphore(self._max_concurrent)
        result = ReconciliationResult({t: TargetResult(t) for t in batch})

        t0 = time.monotonic()
        log.info(f"Reconciling {len(batch)} target(s), concurrency {self._max_concurrent}")
        await asyncio.gather(*(
            self._run_target(result[t], sem, timeout_s) for t in batch
        ))
        log.info(
            f"Reconciliation done in {time.monotonic() - t0:.2f}s: "
            f"{len(result.succeeded)} ok, {len(result.failed)} failed"
        )
        return result

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    # ── Per-target pipeline ───────────────────────────────────────────────────

    async def _run_target(self, tr: TargetResult, sem: asyncio.Semaphore,
                          timeout_s: Optional[float]) -> None:
        async with sem:
            try:
                snapshot = await self._collect(tr.target, timeout_s)
                tr.snapshot = snapshot
                tr.advance(TargetStage.COLLECTED)

                await self._in_store(self._commit, tr)

                tr.series = await self._in_store(
                    self._store.series, tr.snapshot.ip, list(tr.snapshot.ports),
                )
                tr.advance(TargetStage.REPORTED)
            except PortLedgerError as exc:
                log.warning(f"{tr.target}: failed at {tr.stage.value}: {exc}")
                tr.fail(exc)
            except Exception as exc:
                log.exception(f"{tr.target}: unexpected error at {tr.stage.value}")
                err = PortLedgerError(f"Unexpected error: {exc}", tr.target)
                err.__cause__ = exc
                tr.fail(err)

    async def _collect(self, target: str, timeout_s: Optional[float]) -> Snapshot:
        raw = await self._probe.probe(target, timeout_s=timeout_s)
        return self._parse(raw, target)

    def _commit(self, tr: TargetResult) -> None:
        """latest → diff → persist for one host, under that host's lock.
        Runs on the store thread pool."""

        def classify(snapshot: Snapshot, previous: Optional[Snapshot]):
            tr.snapshot = snapshot
            tr.previous_seen = previous is not None
            tr.changes = diff(snapshot, previous)
            tr.advance(TargetStage.DIFFED)
            return tr.changes

        with self._locks.hold(tr.snapshot.ip):
            snapshot, _, changes = self._store.commit(tr.snapshot, classify)
        tr.snapshot, tr.changes = snapshot, changes
        log.info(f"{snapshot.ip}: {len(snapshot.ports)} port(s), changes {summarize(changes)}")
        tr.advance(TargetStage.PERSISTED)

    async def _in_store(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)


def run_reconcile(reconciler: Reconciler, targets: List[str],
                  timeout_s: Optional[float] = None) -> ReconciliationResult:
    """Blocking entry point for sync callers (CLI, Flask views)."""
    return asyncio.run(reconciler.reconcile(targets, timeout_s=timeout_s))


__all__ = ["Reconciler", "HostLocks", "run_reconcile"]
