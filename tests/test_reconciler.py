"""
tests/test_reconciler.py
Reconciliation pipeline against a real sqlite3 store and an in-process prober.
Run: pytest tests/test_reconciler.py -v
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import asyncio
import sqlite3
import threading
import time

import pytest

from core.models import TargetResult
from core.reconciler import HostLocks, Reconciler, run_reconcile
from database.repository import HistoryStore
from tests.helpers import FailingStore, FakeProbe, SlowStore, nmap_xml
from utils.constants import ChangeKind, PortStatus, TargetStage
from utils.errors import (
    NoHostFailure, ParseFailure, PersistenceFailure, PortLedgerError,
    ProbeFailure, ValidationFailure,
)


@pytest.fixture
def store(tmp_path):
    return HistoryStore(db_path=str(tmp_path / "ledger.db"))


@pytest.fixture
def make(store):
    """Reconciler factory; executors are shut down after the test."""
    made = []

    def _make(probe, store_=None, **kw):
        r = Reconciler(probe, store_ or store, **kw)
        made.append(r)
        return r

    yield _make
    for r in made:
        r.close()


def rows(store, table):
    conn = sqlite3.connect(store.db_path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()


# ─── Single target ────────────────────────────────────────────────────────────

class TestFirstObservation:

    @pytest.mark.asyncio
    async def test_every_port_added(self, make, store):
        probe = FakeProbe({"10.0.0.1": nmap_xml("10.0.0.1", {22: "open", 80: "open"})})
        res = await make(probe).reconcile(["10.0.0.1"])

        tr = res["10.0.0.1"]
        assert tr.ok
        assert tr.previous_seen is False
        assert {c.port: c.kind for c in tr.changes} == {22: ChangeKind.ADDED, 80: ChangeKind.ADDED}
        assert store.latest_snapshot("10.0.0.1").status_map() == {
            22: PortStatus.OPEN, 80: PortStatus.OPEN,
        }

    @pytest.mark.asyncio
    async def test_report_shape(self, make):
        probe = FakeProbe({"10.0.0.1": nmap_xml("10.0.0.1", {80: "open"})})
        res = await make(probe).reconcile(["10.0.0.1"])
        d = res.to_dict()

        assert d["summary"] == {"targets": 1, "succeeded": 1, "failed": 0}
        entry = d["scan_results"][0]
        assert entry["status"] == "reported"
        assert entry["changes"] == {"80": "added"}
        assert entry["first_observation"] is True
        assert entry["port_history"][0]["port_number"] == 80
        assert entry["port_history"][0]["history"][0]["status"] == "open"

    @pytest.mark.asyncio
    async def test_host_with_no_ports(self, make, store):
        probe = FakeProbe({"10.0.0.1": nmap_xml("10.0.0.1", {})})
        res = await make(probe).reconcile(["10.0.0.1"])
        assert res["10.0.0.1"].ok
        assert res["10.0.0.1"].changes == frozenset()
        assert store.exists("10.0.0.1")


class TestRepeatedObservation:

    @pytest.mark.asyncio
    async def test_identical_rerun_has_no_changes(self, make, store):
        xml = nmap_xml("10.0.0.1", {80: "open"})
        rec = make(FakeProbe({"10.0.0.1": xml}))

        await rec.reconcile(["10.0.0.1"])
        res = await rec.reconcile(["10.0.0.1"])

        tr = res["10.0.0.1"]
        assert tr.ok
        assert tr.previous_seen is True
        assert tr.changes == frozenset()

        points = tr.series.for_port(80)
        assert len(points) == 2
        assert [p.status for p in points] == [PortStatus.OPEN, PortStatus.OPEN]
        assert points[0].observed_at < points[1].observed_at
        assert rows(store, "port_changes") == 1

    @pytest.mark.asyncio
    async def test_state_changes_detected(self, make):
        probe = FakeProbe({"10.0.0.1": [
            nmap_xml("10.0.0.1", {80: "open", 443: "open"}, start=1700000000),
            nmap_xml("10.0.0.1", {80: "closed", 8080: "open"}, start=1700000600),
        ]})
        rec = make(probe)
        await rec.reconcile(["10.0.0.1"])
        res = await rec.reconcile(["10.0.0.1"])

        changes = {c.port: c.kind for c in res["10.0.0.1"].changes}
        assert changes == {
            80: ChangeKind.UPDATED, 443: ChangeKind.REMOVED, 8080: ChangeKind.ADDED,
        }
        assert [p.status for p in res["10.0.0.1"].series.for_port(80)] == [
            PortStatus.OPEN, PortStatus.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_older_observation_advanced_past_latest(self, make, store):
        probe = FakeProbe({"10.0.0.1": [
            nmap_xml("10.0.0.1", {80: "open"}, start=1700000600),
            nmap_xml("10.0.0.1", {80: "closed"}, start=1700000000),
        ]})
        rec = make(probe)
        first = (await rec.reconcile(["10.0.0.1"]))["10.0.0.1"]
        second = (await rec.reconcile(["10.0.0.1"]))["10.0.0.1"]

        assert second.snapshot.observed_at > first.snapshot.observed_at
        assert store.latest_snapshot("10.0.0.1").status_map() == {80: PortStatus.CLOSED}


# ─── Failure isolation ────────────────────────────────────────────────────────

class TestPartialFailure:

    @pytest.mark.asyncio
    async def test_timeout_fails_only_that_target(self, make):
        probe = FakeProbe(
            {t: nmap_xml(t, {80: "open"}) for t in ("10.0.0.1", "10.0.0.2", "10.0.0.3")},
            delays={"10.0.0.2": 5.0},
        )
        res = await make(probe).reconcile(["10.0.0.1", "10.0.0.2", "10.0.0.3"], timeout_s=0.2)

        assert res["10.0.0.1"].ok and res["10.0.0.3"].ok
        bad = res["10.0.0.2"]
        assert bad.stage is TargetStage.FAILED
        assert isinstance(bad.error, ProbeFailure)
        assert bad.error.timed_out is True
        assert bad.failed_at is TargetStage.PENDING
        assert [r.target for r in res.failed] == ["10.0.0.2"]

    @pytest.mark.asyncio
    async def test_probe_exit_failure(self, make):
        probe = FakeProbe({
            "10.0.0.1": ProbeFailure("Prober exited with status 1", "10.0.0.1", returncode=1),
            "10.0.0.2": nmap_xml("10.0.0.2", {22: "open"}),
        })
        res = await make(probe).reconcile(["10.0.0.1", "10.0.0.2"])
        assert res["10.0.0.1"].error.returncode == 1
        assert res["10.0.0.1"].to_dict()["error"] == {
            "code": "probe_failed", "message": "could not reach host", "timed_out": False,
        }
        assert res["10.0.0.2"].ok

    @pytest.mark.asyncio
    async def test_parse_failures_recorded_per_target(self, make, store):
        probe = FakeProbe({
            "10.0.0.1": b"not xml at all",
            "10.0.0.2": nmap_xml(with_host=False),
            "10.0.0.3": nmap_xml("10.0.0.3", {443: "open"}),
        })
        res = await make(probe).reconcile(["10.0.0.1", "10.0.0.2", "10.0.0.3"])

        assert isinstance(res["10.0.0.1"].error, ParseFailure)
        assert isinstance(res["10.0.0.2"].error, NoHostFailure)
        assert res["10.0.0.3"].ok
        assert not store.exists("10.0.0.1")
        assert not store.exists("10.0.0.2")

    @pytest.mark.asyncio
    async def test_persistence_failure_isolated(self, make, tmp_path):
        failing = FailingStore(str(tmp_path / "f.db"), fail_ip="10.0.0.2")
        probe = FakeProbe({t: nmap_xml(t, {80: "open"}) for t in ("10.0.0.1", "10.0.0.2")})
        res = await make(probe, failing).reconcile(["10.0.0.1", "10.0.0.2"])

        assert res["10.0.0.1"].ok
        bad = res["10.0.0.2"]
        assert isinstance(bad.error, PersistenceFailure)
        assert bad.failed_at is TargetStage.DIFFED
        assert isinstance(bad.error.__cause__, sqlite3.OperationalError)
        assert failing.exists("10.0.0.1")
        assert not failing.exists("10.0.0.2")

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self, make):
        def boom(raw, target):
            raise RuntimeError("kaboom")

        probe = FakeProbe({"10.0.0.1": nmap_xml()})
        res = await make(probe, parser=boom).reconcile(["10.0.0.1"])
        err = res["10.0.0.1"].error
        assert type(err) is PortLedgerError
        assert isinstance(err.__cause__, RuntimeError)
        assert err.to_dict()["message"] == "internal error"


class TestValidation:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("targets", [[], ["   "], ["10.0.0.0/24"], "10.0.0.1", None])
    async def test_bad_batch_rejected_before_probing(self, make, targets):
        probe = FakeProbe({})
        with pytest.raises(ValidationFailure):
            await make(probe).reconcile(targets)
        assert probe.calls == []

    @pytest.mark.asyncio
    async def test_too_many_targets(self, make):
        probe = FakeProbe({})
        with pytest.raises(ValidationFailure, match="Too many"):
            await make(probe, max_targets=2).reconcile(["10.0.0.1", "10.0.0.2", "10.0.0.3"])

    @pytest.mark.asyncio
    async def test_duplicates_probed_once(self, make):
        probe = FakeProbe({"10.0.0.1": nmap_xml()})
        res = await make(probe).reconcile(["10.0.0.1", " 10.0.0.1 "])
        assert len(res) == 1
        assert probe.calls == ["10.0.0.1"]

    def test_zero_concurrency_rejected(self, store):
        with pytest.raises(ValueError):
            Reconciler(FakeProbe({}), store, max_concurrent=0)


# ─── Concurrency ──────────────────────────────────────────────────────────────

class TestConcurrency:

    @pytest.mark.asyncio
    async def test_same_host_two_targets_serialized(self, make, store):
        xml = nmap_xml("10.0.0.1", {80: "open", 443: "open"})
        probe = FakeProbe({"10.0.0.1": xml, "gw.example": xml})
        res = await make(probe).reconcile(["10.0.0.1", "gw.example"])

        a, b = res["10.0.0.1"], res["gw.example"]
        assert a.ok and b.ok
        assert {a.previous_seen, b.previous_seen} == {False, True}
        later = a if a.previous_seen else b
        assert later.changes == frozenset()
        assert rows(store, "hosts") == 1
        assert rows(store, "port_history") == 4
        assert rows(store, "port_changes") == 2

    @pytest.mark.asyncio
    async def test_bounded_parallelism(self, make):
        targets = [f"10.0.1.{i}" for i in range(1, 9)]
        probe = FakeProbe(
            {t: nmap_xml(t, {80: "open"}) for t in targets},
            delays={t: 0.05 for t in targets},
        )
        res = await make(probe, max_concurrent=3).reconcile(targets)
        assert len(res.succeeded) == 8
        assert 1 <= probe.max_active <= 3

    @pytest.mark.asyncio
    async def test_separate_reconcilers_on_one_file(self, make, tmp_path):
        # own stores and locks, as a CLI run next to the API would have
        path = str(tmp_path / "shared.db")
        xml = nmap_xml("10.0.0.1", {80: "open"})
        recs = [
            make(FakeProbe({"10.0.0.1": xml}), SlowStore(path, delay_s=0.2), locks=HostLocks())
            for _ in range(2)
        ]
        results = await asyncio.gather(*(r.reconcile(["10.0.0.1"]) for r in recs))
        a, b = (res["10.0.0.1"] for res in results)

        assert a.ok and b.ok
        assert {a.previous_seen, b.previous_seen} == {False, True}
        assert a.snapshot.observed_at != b.snapshot.observed_at
        shared = HistoryStore(path)
        assert rows(shared, "port_changes") == 1
        assert rows(shared, "snapshots") == 2
        points = shared.series("10.0.0.1", [80]).for_port(80)
        assert len({p.observed_at for p in points}) == 2

    def test_default_concurrency_from_profile(self, make):
        rec = make(FakeProbe({}))
        assert rec._max_concurrent == FakeProbe.profile.max_concurrent_targets

    @pytest.mark.asyncio
    async def test_locks_released(self, make):
        locks = HostLocks()
        probe = FakeProbe({t: nmap_xml(t) for t in ("10.0.0.1", "10.0.0.2")})
        await make(probe, locks=locks).reconcile(["10.0.0.1", "10.0.0.2"])
        assert len(locks) == 0


class TestHostLocks:

    def test_same_key_excludes(self):
        locks = HostLocks()
        inside, overlap = [], []

        def worker():
            with locks.hold("10.0.0.1"):
                if inside:
                    overlap.append(True)
                inside.append(1)
                time.sleep(0.02)
                inside.pop()

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads: t.start()
        for t in threads: t.join()
        assert overlap == []
        assert len(locks) == 0

    def test_different_keys_independent(self):
        locks = HostLocks()
        with locks.hold("10.0.0.1"):
            with locks.hold("10.0.0.2"):
                assert len(locks) == 2
        assert len(locks) == 0


class TestStages:

    @pytest.mark.asyncio
    async def test_success_ends_reported(self, make):
        res = await make(FakeProbe({"10.0.0.1": nmap_xml()})).reconcile(["10.0.0.1"])
        tr = res["10.0.0.1"]
        assert tr.stage is TargetStage.REPORTED
        assert tr.failed_at is None and tr.error is None

    def test_terminal_stage_is_final(self):
        tr = TargetResult("10.0.0.1")
        tr.fail(ProbeFailure("unreachable", "10.0.0.1"))
        with pytest.raises(ValueError):
            tr.advance(TargetStage.COLLECTED)

    def test_run_reconcile_sync_entry(self, store):
        rec = Reconciler(FakeProbe({"10.0.0.1": nmap_xml()}), store)
        try:
            res = run_reconcile(rec, ["10.0.0.1"])
        finally:
            rec.close()
        assert res["10.0.0.1"].ok


if __name__ == "__main__":
    pytest.main([__file__, "-v", "--tb=short"])
