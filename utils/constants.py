"""
PortLedger Constants & Enums
Port states follow nmap's portlist.h state names, timing presets follow -T0..-T5
"""

from enum import Enum
from dataclasses import dataclass


# ─── Port States (nmap state strings, one enumeration for every layer) ────────
class PortStatus(str, Enum):
    OPEN            = "open"
    CLOSED          = "closed"
    FILTERED        = "filtered"
    UNFILTERED      = "unfiltered"
    OPEN_FILTERED   = "open|filtered"
    CLOSED_FILTERED = "closed|filtered"


# ─── Change Kinds ─────────────────────────────────────────────────────────────
class ChangeKind(str, Enum):
    ADDED   = "added"     # port reported now, absent from the previous snapshot
    REMOVED = "removed"   # port in the previous snapshot, absent now
    UPDATED = "updated"   # port in both, status differs


# ─── Per-target pipeline stages ───────────────────────────────────────────────
class TargetStage(str, Enum):
    PENDING   = "pending"
    COLLECTED = "collected"
    DIFFED    = "diffed"
    PERSISTED = "persisted"
    REPORTED  = "reported"
    FAILED    = "failed"


TERMINAL_STAGES = frozenset({TargetStage.REPORTED, TargetStage.FAILED})


# ─── Timing Presets (mirrors nmap -T0 to -T5) ─────────────────────────────────
@dataclass(frozen=True)
class TimingProfile:
    """Probe timing profile: nmap template plus how hard we drive it."""
    name: str
    nmap_template: int             # passed as -T<n>
    max_concurrent_targets: int    # worker pool size for one reconciliation
    probe_timeout_s: float         # per-target wall clock limit


TIMING_PROFILES = {
    "paranoid":   TimingProfile("T0-Paranoid",   nmap_template=0, max_concurrent_targets=1,
                                probe_timeout_s=3600.0),
    "sneaky":     TimingProfile("T1-Sneaky",     nmap_template=1, max_concurrent_targets=1,
                                probe_timeout_s=1800.0),
    "polite":     TimingProfile("T2-Polite",     nmap_template=2, max_concurrent_targets=2,
                                probe_timeout_s=900.0),
    "normal":     TimingProfile("T3-Normal",     nmap_template=3, max_concurrent_targets=4,
                                probe_timeout_s=300.0),
    "aggressive": TimingProfile("T4-Aggressive", nmap_template=4, max_concurrent_targets=8,
                                probe_timeout_s=180.0),
    "insane":     TimingProfile("T5-Insane",     nmap_template=5, max_concurrent_targets=16,
                                probe_timeout_s=120.0),
}

DEFAULT_TIMING = "insane"

# ─── Port Parser Limits ───────────────────────────────────────────────────────
PORT_MIN          = 0
PORT_MAX          = 65535
DEFAULT_PORT_SPEC = "0-1000"

# ─── Request limits ───────────────────────────────────────────────────────────
MAX_TARGETS_PER_REQUEST = 256
HOSTNAME_MAX_LEN        = 253

# ─── Layering Contract (hard import rules - enforced by tests) ───────────────
# utils    → imports nothing from the project
# core     → may import: utils
# database → may import: utils, core.models
# api      → may import: core, database, utils
# NEVER: core imports database or api, database imports core engine modules
