"""
core/probe.py
Async wrapper around the external prober (nmap) — one subprocess per target.

  • asyncio.create_subprocess_exec — no shell, argv built from validated parts
  • per-target wall clock limit; on expiry the child is killed and only that
    target fails
  • non-zero exit / missing binary → ProbeFailure, never process-fatal
  • returns raw XML bytes; interpretation lives in core/observation_parser.py
"""

from __future__ import annotations

import asyncio
import time
from typing import List, Optional

from core.port_parser import PortParser, to_nmap_arg
from core.timing import get_timing
from utils.constants import DEFAULT_PORT_SPEC, DEFAULT_TIMING, TimingProfile
from utils.errors import ProbeFailure
from utils.logger import get_logger

log = get_logger("portledger.probe")


class NmapProbe:
    """
    Runs ``nmap -p <ports> [--open] --stats-every 0 -oX - -T<n> <target>``.

    Layering contract:
      Imports only: core/port_parser.py, core/timing.py, utils
      Does NOT import: database, api
    """

    def __init__(
        self,
        binary: str = "nmap",
        ports: str = DEFAULT_PORT_SPEC,
        timing: "str | TimingProfile" = DEFAULT_TIMING,
        open_only: bool = True,
        timeout_s: Optional[float] = None,
    ):
        self._binary = binary
        self._ports_arg = to_nmap_arg(PortParser().parse(ports))
        self._profile: TimingProfile = (
            get_timing(timing) if isinstance(timing, str) else timing
        )
        self._open_only = open_only
        self.timeout_s = float(timeout_s) if timeout_s is not None else self._profile.probe_timeout_s

    @property
    def profile(self) -> TimingProfile:
        return self._profile

    def command(self, target: str) -> List[str]:
        cmd = [self._binary, "-p", self._ports_arg]
        if self._open_only:
            cmd.append("--open")
        cmd += ["--stats-every", "0", "-oX", "-", f"-T{self._profile.nmap_template}", target]
        return cmd

    async def probe(self, target: str, timeout_s: Optional[float] = None) -> bytes:
        """Run the prober for one target and return its XML output."""
        timeout = self.timeout_s if timeout_s is None else timeout_s
        cmd = self.command(target)
        log.debug(f"Command: {' '.join(cmd)}")

        t0 = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ProbeFailure(f"Prober binary not found: {self._binary}", target) from exc
        except OSError as exc:
            raise ProbeFailure(f"Could not start prober: {exc}", target) from exc

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill(proc)
            raise ProbeFailure(
                f"Probe of {target} exceeded {timeout:.0f}s", target, timed_out=True,
            ) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        elapsed = time.monotonic() - t0
        if proc.returncode != 0:
            tail = stderr.decode("utf-8", errors="replace").strip()[-300:]
            log.warning(f"{target}: prober exited {proc.returncode} after {elapsed:.1f}s: {tail}")
            raise ProbeFailure(
                f"Prober exited with status {proc.returncode}", target,
                returncode=proc.returncode,
            )

        log.info(f"{target}: probe done in {elapsed:.2f}s ({len(stdout)} bytes)")
        return stdout

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            return
        await proc.wait()


__all__ = ["NmapProbe"]
