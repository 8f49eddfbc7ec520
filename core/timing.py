"""
core/timing.py
Probe timing profile lookup.

A profile picks nmap's -T template plus the reconciliation worker pool size
and the per-target timeout. Config values may override the last two.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Optional

from utils.constants import TimingProfile, TIMING_PROFILES, DEFAULT_TIMING


_SHORTHAND = {"t0": "paranoid", "t1": "sneaky", "t2": "polite",
              "t3": "normal",   "t4": "aggressive", "t5": "insane"}


def get_timing(name: str = DEFAULT_TIMING) -> TimingProfile:
    """
    Get a timing profile by name.
    Accepts: paranoid, sneaky, polite, normal, aggressive, insane
             or T0 .. T5 shorthand.
    """
    key = _SHORTHAND.get(name.lower(), name.lower())
    if key not in TIMING_PROFILES:
        raise ValueError(
            f"Unknown timing profile {name!r}. "
            f"Choose from: {list(TIMING_PROFILES)}"
        )
    return TIMING_PROFILES[key]


def resolve_timing(name: str,
                   timeout_s: Optional[float] = None,
                   max_concurrent: Optional[int] = None) -> TimingProfile:
    """Profile by name with optional per-deployment overrides applied."""
    profile = get_timing(name)
    if timeout_s is not None:
        profile = replace(profile, probe_timeout_s=float(timeout_s))
    if max_concurrent is not None:
        profile = replace(profile, max_concurrent_targets=int(max_concurrent))
    return profile


__all__ = ["get_timing", "resolve_timing"]
