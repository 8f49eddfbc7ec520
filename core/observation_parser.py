"""
core/observation_parser.py
nmap XML (-oX) → Snapshot.

Pure: bytes in, Snapshot out, no I/O. Reads only what reconciliation needs:

  <nmaprun start="1700000000">
    <host>
      <address addr="93.184.216.34" addrtype="ipv4"/>
      <ports>
        <port protocol="tcp" portid="80"><state state="open"/></port>
      </ports>
    </host>
  </nmaprun>

Errors:
  ParseFailure   — not XML / not an nmaprun / bad port id / unknown state
  NoHostFailure  — zero hosts or zero IP addresses reported
  TimeFailure    — start attribute missing or not epoch seconds
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Dict, Optional, Union

from core.models import Snapshot
from utils.constants import PortStatus, PORT_MIN, PORT_MAX
from utils.errors import NoHostFailure, ParseFailure, TimeFailure
from utils.logger import get_logger

log = get_logger("portledger.parser")

_IP_ADDRTYPES = {"ipv4", "ipv6"}
_STATUS_BY_NAME = {s.value: s for s in PortStatus}


def parse_status(raw: Optional[str]) -> PortStatus:
    """Map a prober state string onto PortStatus. Unknown values fail closed."""
    key = (raw or "").strip().lower()
    try:
        return _STATUS_BY_NAME[key]
    except KeyError:
        raise ParseFailure(f"Unrecognised port state {raw!r}") from None


def parse_start_time(raw: Optional[str]) -> datetime:
    if raw is None or not raw.strip():
        raise TimeFailure("nmaprun has no start time")
    try:
        return datetime.fromtimestamp(int(raw.strip()), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise TimeFailure(f"Unparsable start time {raw!r}") from exc


def parse_observation(raw: Union[bytes, str], target: str) -> Snapshot:
    """
    Parse one target's nmap XML into a Snapshot.

    ``target`` is what was requested. When it differs from the address nmap
    reports (a hostname that resolved), it is kept as the hostname.
    """
    if not raw or not raw.strip():
        raise ParseFailure("Empty probe output", target)
    try:
        root = ET.fromstring(raw)
    except ET.ParseError as exc:
        raise ParseFailure(f"Malformed probe output: {exc}", target) from exc

    if root.tag != "nmaprun":
        raise ParseFailure(f"Unexpected root element <{root.tag}>", target)

    try:
        observed_at = parse_start_time(root.get("start"))
    except TimeFailure as exc:
        exc.target = target
        raise

    hosts = root.findall("./host")
    if not hosts:
        raise NoHostFailure(f"No host reported for {target}", target)
    if len(hosts) > 1:
        log.debug(f"{target}: {len(hosts)} hosts reported, using the first")
    host = hosts[0]

    ip = _first_ip(host)
    if ip is None:
        raise NoHostFailure(f"No address reported for {target}", target)

    ports: Dict[int, PortStatus] = {}
    for port in host.findall("./ports/port"):
        proto = port.get("protocol", "tcp")
        if proto != "tcp":
            log.debug(f"{ip}: skipping {proto} port {port.get('portid')}")
            continue
        port_id = _port_number(port.get("portid"), target)
        state = port.find("./state")
        if state is None:
            raise ParseFailure(f"Port {port_id} has no state element", target)
        try:
            ports[port_id] = parse_status(state.get("state"))
        except ParseFailure as exc:
            exc.target = target
            raise

    hostname = target if target != ip else None
    return Snapshot.build(ip, observed_at, ports, hostname=hostname)


def _first_ip(host: ET.Element) -> Optional[str]:
    for addr in host.findall("./address"):
        if addr.get("addrtype", "ipv4") in _IP_ADDRTYPES and addr.get("addr"):
            return addr.get("addr")
    return None


def _port_number(raw: Optional[str], target: str) -> int:
    try:
        port = int(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ParseFailure(f"Invalid port id {raw!r}", target) from None
    if not (PORT_MIN <= port <= PORT_MAX):
        raise ParseFailure(f"Port {port} out of valid range [{PORT_MIN}, {PORT_MAX}]", target)
    return port


__all__ = ["parse_observation", "parse_status", "parse_start_time"]
