#!/usr/bin/env python3
"""
PortLedger v1.0 — Port-state reconciliation & history
main.py — CLI entry point

Usage:
  python3 main.py --scan 192.168.1.1 example.org
  python3 main.py --scan 10.0.0.5 --ports 0-1000 --timing aggressive
  python3 main.py --history 10.0.0.5 --ports 22,80,443
  python3 main.py --changes 10.0.0.5 --limit 20
  python3 main.py --hosts
  python3 main.py --serve --host 127.0.0.1 --api-port 5000
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

# Try uvloop for faster subprocess / executor plumbing on Linux/macOS
try:
    import uvloop
    asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
except ImportError:
    pass

from core.diff import summarize
from core.models import ReconciliationResult, format_ts
from core.port_parser import PortParser, PortParseError
from core.probe import NmapProbe
from core.reconciler import Reconciler, run_reconcile
from core.timing import resolve_timing
from database.migrations import migrate
from database.repository import HistoryStore
from utils.config import AppConfig, load_config
from utils.constants import TIMING_PROFILES
from utils.errors import PortLedgerError, ValidationFailure
from utils.logger import get_logger, set_level

log = get_logger("portledger")

BANNER = r"""
  ╔═══════════════════════════════════════════════════╗
  ║  PortLedger v1.0                                  ║
  ║  port state · change tracking · scan history     ║
  ╚═══════════════════════════════════════════════════╝"""


# ─── Wiring ───────────────────────────────────────────────────────────────────

def build_services(cfg: AppConfig) -> tuple[HistoryStore, Reconciler]:
    """Construct store, prober and reconciler from one config object."""
    store = HistoryStore(cfg.db_path)
    migrate(cfg.db_path)   # apply any pending schema migrations

    profile = resolve_timing(cfg.probe.timing, cfg.probe.timeout_s, cfg.probe.max_concurrent)
    probe = NmapProbe(
        binary=cfg.probe.binary,
        ports=cfg.probe.ports,
        timing=profile,
        open_only=cfg.probe.open_only,
    )
    reconciler = Reconciler(probe, store, max_targets=cfg.api.max_targets)
    return store, reconciler


# ─── Output ───────────────────────────────────────────────────────────────────

def print_result(result: ReconciliationResult) -> None:
    print(f"\n{'═'*60}")
    print(f"  RECONCILIATION COMPLETE — {len(result.succeeded)}/{len(result)} ok")
    print(f"{'═'*60}\n")

    for tr in result:
        if not tr.ok:
            err = tr.error
            print(f"  ✗ {tr.target:<30} {err.code}: {err}")
            continue
        snap = tr.snapshot
        changes = {c.port: c.kind.value for c in tr.changes}
        label = f"{snap.ip}  ({snap.host.hostname})" if snap.host.hostname else snap.ip
        print(f"  ┌─ {label}  @ {format_ts(snap.observed_at)}")
        if not tr.previous_seen:
            print("  │  first observation")
        print(f"  │  {'PORT':<8} {'STATUS':<16} CHANGE")
        print(f"  │  {'─'*40}")
        for port in sorted(set(snap.ports) | set(changes)):
            obs = snap.ports.get(port)
            status = obs.status.value if obs else "—"
            print(f"  │  {port:<8} {status:<16} {changes.get(port, '')}")
        print(f"  └─ {summarize(tr.changes)}\n")


def show_history(store: HistoryStore, ip: str, ports_spec: str | None) -> None:
    if ports_spec:
        ports = PortParser().parse(ports_spec)
    else:
        snap = store.latest_snapshot(ip)
        if snap is None:
            print(f"  No history for {ip}. Run: python3 main.py --scan {ip}")
            return
        ports = list(snap.ports)
    series = store.series(ip, ports)
    for port in sorted(series.points):
        points = series.for_port(port)
        print(f"\n  {ip}:{port}  ({len(points)} observation(s))")
        for pt in points:
            print(f"    {format_ts(pt.observed_at)}  {pt.status.value}")


def show_changes(store: HistoryStore, ip: str, limit: int) -> None:
    rows = store.changes(ip, limit)
    if not rows:
        print(f"  No recorded changes for {ip}")
        return
    print(f"\n  {'WHEN':<30} {'PORT':<8} CHANGE")
    print("  " + "─" * 48)
    for r in rows:
        print(f"  {r['observed_at']:<30} {r['port']:<8} {r['change']}")


def show_hosts(store: HistoryStore) -> None:
    hosts = store.list_hosts()
    if not hosts:
        print("  No hosts recorded yet.")
        return
    print(f"\n  {'IP':<40} {'HOSTNAME':<28} {'OPEN':<6} LAST SEEN")
    print("  " + "─" * 100)
    for h in hosts:
        print(f"  {h['ip_address']:<40} {(h['hostname'] or ''):<28} "
              f"{h['open_ports']:<6} {h['last_observed_at']}")


# ─── CLI ─────────────────────────────────────────────────────────────────────

def build_cli() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="portledger",
        description="PortLedger v1.0 — port-state reconciliation & history",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Port specs:   80  |  80,443  |  0-1000  |  - (all)
Timing:       paranoid t0  sneaky t1  polite t2
              normal t3   aggressive t4   insane t5

Examples:
  %(prog)s --scan 192.168.1.1 example.org
  %(prog)s --scan 10.0.0.5 --ports 1-65535 --timing aggressive
  %(prog)s --history 10.0.0.5 --ports 22,80
  %(prog)s --serve --host 0.0.0.0 --api-port 8080
""",
    )
    g = ap.add_argument_group
    s = g("Scan")
    s.add_argument("--scan",       metavar="TARGET",  nargs="+", help="IP addresses / hostnames")
    s.add_argument("--ports",      metavar="SPEC",    help="Port spec (default from config: 0-1000)")
    s.add_argument("--timing",     metavar="PROFILE",
                   choices=list(TIMING_PROFILES) + ["t0","t1","t2","t3","t4","t5"])
    s.add_argument("--timeout",    metavar="SEC",     type=float, help="Per-target probe timeout")
    s.add_argument("--workers",    metavar="N",       type=int, help="Targets probed in parallel")
    s.add_argument("--json",       action="store_true", help="Print the result as JSON")

    h = g("History")
    h.add_argument("--history",    metavar="IP",      help="Show port history for a host")
    h.add_argument("--changes",    metavar="IP",      help="Show recorded changes for a host")
    h.add_argument("--limit",      metavar="N",       type=int, default=50)
    h.add_argument("--hosts",      action="store_true", help="List known hosts")

    db = g("Database")
    db.add_argument("--db-path",   metavar="FILE")
    db.add_argument("--migrate",   action="store_true", help="Apply schema migrations and exit")
    db.add_argument("--clear-db",  action="store_true", help="Delete all records")

    d = g("API")
    d.add_argument("--serve",      action="store_true", help="Start the HTTP API")
    d.add_argument("--host")
    d.add_argument("--api-port",   type=int, metavar="PORT")

    ap.add_argument("--config",    default="config.yaml", metavar="FILE")
    ap.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    ap.add_argument("--quiet",     action="store_true", help="Only log warnings and errors")
    ap.add_argument("--no-logo",   action="store_true", help="Hide ASCII banner")
    ap.add_argument("--version",   action="version",   version="PortLedger 1.0")
    return ap


def main() -> None:
    ap   = build_cli()
    if len(sys.argv) == 1:
        ap.print_help(); sys.exit(0)
    args = ap.parse_args()

    if not args.no_logo and not args.json:
        print(BANNER)

    try:
        cfg = load_config(args.config).with_overrides(**{
            "db_path":              args.db_path,
            "log_level":            "WARNING" if args.quiet else args.log_level,
            "probe.ports":          args.ports,
            "probe.timing":         args.timing,
            "probe.timeout_s":      args.timeout,
            "probe.max_concurrent": args.workers,
            "api.host":             args.host,
            "api.port":             args.api_port,
        })
        PortParser().parse(cfg.probe.ports)
    except (ValueError, PortParseError) as exc:
        log.error(f"Configuration error: {exc}")
        sys.exit(2)

    set_level(cfg.log_level)

    try:
        if args.migrate:
            HistoryStore(cfg.db_path)
            version = migrate(cfg.db_path)
            print(f"  ✓ Schema at v{version}")
            return

        store, reconciler = build_services(cfg)

        if args.scan:
            try:
                result = run_reconcile(reconciler, args.scan)
            except ValidationFailure as exc:
                log.error(f"Invalid targets: {exc}"); sys.exit(2)
            finally:
                reconciler.close()
            if args.json:
                print(json.dumps(result.to_dict(), indent=2))
            else:
                print_result(result)
            sys.exit(0 if not result.failed else 1)

        elif args.history:
            show_history(store, args.history, args.ports)

        elif args.changes:
            show_changes(store, args.changes, args.limit)

        elif args.hosts:
            show_hosts(store)

        elif args.serve:
            from api.app import run_api
            run_api(cfg.api, reconciler, store)

        elif args.clear_db:
            confirm = input("  [!] Delete ALL records from database? (yes/no): ")
            if confirm.strip().lower() == "yes":
                store.clear_all()
                print("  ✓ Database cleared")
            else:
                print("  Cancelled")

    except KeyboardInterrupt:
        print("\n  [!] Interrupted by user")
        sys.exit(0)
    except PortLedgerError as exc:
        log.error(f"{exc.code}: {exc}")
        sys.exit(1)
    except PortParseError as exc:
        log.error(f"Port parse error: {exc}")
        sys.exit(2)
    except Exception as exc:
        log.exception(f"Fatal error: {exc}")
        sys.exit(1)


if __name__ == "__main__":
    main()
