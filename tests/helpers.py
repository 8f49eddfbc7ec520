"""
tests/helpers.py
Shared test doubles: nmap XML builder, in-process prober, failing and slow stores.
"""

import asyncio
import sqlite3
import time
from typing import Dict, List, Optional, Union

from core.timing import get_timing
from database.repository import HistoryStore
from utils.errors import ProbeFailure


START = 1700000000   # 2023-11-14T22:13:20Z


def nmap_xml(ip: str = "10.0.0.1", ports: Optional[Dict[int, str]] = None,
             start: Optional[int] = START, with_host: bool = True,
             addrtype: str = "ipv4") -> bytes:
    """Minimal ``nmap -oX -`` document."""
    start_attr = f' start="{start}"' if start is not None else ""
    body = ""
    if with_host:
        port_xml = "".join(
            f'<port protocol="tcp" portid="{p}"><state state="{s}" reason="syn-ack"/>'
            f'<service name="unknown"/></port>'
            for p, s in sorted((ports or {}).items())
        )
        body = (
            f'<host starttime="{start}"><status state="up"/>'
            f'<address addr="{ip}" addrtype="{addrtype}"/>'
            f'<ports>{port_xml}</ports></host>'
        )
    return (
        f'<?xml version="1.0" encoding="UTF-8"?>'
        f'<nmaprun scanner="nmap" args="nmap -oX -"{start_attr} version="7.94">'
        f'{body}<runstats><finished time="{(start or 0) + 2}"/></runstats></nmaprun>'
    ).encode()


Output = Union[bytes, BaseException]


class FakeProbe:
    """
    Stand-in for NmapProbe. ``outputs`` maps target → bytes, an exception to
    raise, or a list of those consumed one per call. ``delays`` maps target →
    seconds to sleep before answering; a delay beyond the timeout raises a
    timed-out ProbeFailure like the real prober.
    """

    profile = get_timing("normal")

    def __init__(self, outputs: Dict[str, Union[Output, List[Output]]],
                 delays: Optional[Dict[str, float]] = None,
                 timeout_s: float = 5.0):
        self.outputs = outputs
        self.delays = delays or {}
        self.timeout_s = timeout_s
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def probe(self, target: str, timeout_s: Optional[float] = None) -> bytes:
        self.calls.append(target)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            timeout = self.timeout_s if timeout_s is None else timeout_s
            delay = self.delays.get(target, 0.0)
            try:
                await asyncio.wait_for(asyncio.sleep(delay), timeout=timeout)
            except asyncio.TimeoutError:
                raise ProbeFailure(f"Probe of {target} exceeded {timeout}s",
                                   target, timed_out=True) from None
            out = self.outputs[target]
            if isinstance(out, list):
                out = out.pop(0) if len(out) > 1 else out[0]
            if isinstance(out, BaseException):
                raise out
            return out
        finally:
            self.active -= 1


class FailingStore(HistoryStore):
    """HistoryStore that raises between the current-state write and the
    history append, for ``fail_ip`` only (or every host when None)."""

    def __init__(self, *a, fail_ip: Optional[str] = None, **kw):
        super().__init__(*a, **kw)
        self.fail_ip = fail_ip

    def _append_history(self, c, snapshot, ts):
        if self.fail_ip is None or snapshot.ip == self.fail_ip:
            raise sqlite3.OperationalError("injected failure")
        super()._append_history(c, snapshot, ts)


class SlowStore(HistoryStore):
    """HistoryStore whose previous-state read takes ``delay_s``, widening the
    window between reading a host's state and writing the new one."""

    def __init__(self, *a, delay_s: float = 0.2, **kw):
        super().__init__(*a, **kw)
        self.delay_s = delay_s

    def _load_snapshot(self, c, ip):
        previous = super()._load_snapshot(c, ip)
        time.sleep(self.delay_s)
        return previous
