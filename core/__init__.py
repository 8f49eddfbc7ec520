"""
PortLedger Core — Public API

from core import Reconciler, diff, parse_observation
"""
from core.models        import (Host, PortObservation, Snapshot, ChangeRecord,
                                SeriesPoint, HistoricalSeries, TargetResult,
                                ReconciliationResult)
from core.diff          import diff, latest, summarize
from core.observation_parser import parse_observation
from core.port_parser   import PortParser, parse_ports, PortParseError, to_nmap_arg
from core.timing        import get_timing, resolve_timing
from core.probe         import NmapProbe
from core.reconciler    import Reconciler, HostLocks, run_reconcile

__all__ = [
    "Host", "PortObservation", "Snapshot", "ChangeRecord", "SeriesPoint",
    "HistoricalSeries", "TargetResult", "ReconciliationResult",
    "diff", "latest", "summarize",
    "parse_observation",
    "PortParser", "parse_ports", "PortParseError", "to_nmap_arg",
    "get_timing", "resolve_timing",
    "NmapProbe",
    "Reconciler", "HostLocks", "run_reconcile",
]
