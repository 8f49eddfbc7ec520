"""
core/port_parser.py
Port specification parser for the probe's -p argument.

Accepts:
  "80"                 → [80]
  "80,443"             → [80, 443]
  "0-1000"             → [0..1000]
  "22,80-100,443"      → merged & sorted, deduped
  "-"                  → all ports (0-65535)

Rejects:
  "abc", "99999", "-5", "100-50", "", None

``to_nmap_arg`` turns a parsed list back into the compact range form passed
on the command line, so nothing user-supplied reaches the prober verbatim.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Set, Tuple

from utils.constants import PORT_MIN, PORT_MAX


# ─── Custom Exceptions ────────────────────────────────────────────────────────

class PortParseError(ValueError):
    """Raised when port specification is invalid."""


# ─── Parser ───────────────────────────────────────────────────────────────────

class PortParser:
    """
    Parse an nmap-compatible port specification string.

    All errors raise PortParseError with a human-readable message.
    """

    _SINGLE_RE = re.compile(r"^\d+$")
    _RANGE_RE  = re.compile(r"^(\d+)-(\d+)$")

    def parse(self, spec: str) -> List[int]:
        """
        Parse port spec → sorted deduplicated list.

        Raises PortParseError on any invalid input.
        """
        if not isinstance(spec, str):
            raise PortParseError(f"Expected string, got {type(spec).__name__}")

        spec = spec.strip()
        if not spec:
            raise PortParseError("Port specification is empty")

        if spec == "-":
            return list(range(PORT_MIN, PORT_MAX + 1))

        ports: Set[int] = set()
        for part in spec.split(","):
            part = part.strip()
            if not part:
                continue
            ports.update(self._parse_token(part))

        if not ports:
            raise PortParseError(f"No valid ports parsed from: {spec!r}")

        return sorted(ports)

    def validate(self, spec: str) -> Tuple[bool, str]:
        """Return (ok, error_message). Never raises."""
        try:
            self.parse(spec)
            return True, ""
        except PortParseError as exc:
            return False, str(exc)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _parse_token(self, token: str) -> range:
        if self._SINGLE_RE.match(token):
            port = self._validated(int(token))
            return range(port, port + 1)

        m = self._RANGE_RE.match(token)
        if m:
            start, end = int(m.group(1)), int(m.group(2))
            self._validated(start)
            self._validated(end)
            if start > end:
                raise PortParseError(
                    f"Invalid range {start}-{end}: start > end"
                )
            return range(start, end + 1)

        raise PortParseError(
            f"Invalid port token: {token!r}  "
            f"(expected integer or start-end range)"
        )

    @staticmethod
    def _validated(port: int) -> int:
        if not (PORT_MIN <= port <= PORT_MAX):
            raise PortParseError(
                f"Port {port} out of valid range [{PORT_MIN}, {PORT_MAX}]"
            )
        return port


def to_nmap_arg(ports: Iterable[int]) -> str:
    """[0, 1, 2, 80, 443, 444] → "0-2,80,443-444"."""
    ordered = sorted(set(ports))
    if not ordered:
        raise PortParseError("No ports to format")
    parts: List[str] = []
    start = prev = ordered[0]
    for p in ordered[1:]:
        if p == prev + 1:
            prev = p
            continue
        parts.append(str(start) if start == prev else f"{start}-{prev}")
        start = prev = p
    parts.append(str(start) if start == prev else f"{start}-{prev}")
    return ",".join(parts)


# ── Module-level convenience ──────────────────────────────────────────────────

_default_parser = PortParser()


def parse_ports(spec: str) -> List[int]:
    return _default_parser.parse(spec)


__all__ = ["PortParser", "PortParseError", "parse_ports", "to_nmap_arg"]
