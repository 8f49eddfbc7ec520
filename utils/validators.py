"""
utils/validators.py
Input validation for scan targets
"""

import ipaddress
import re
from typing import Iterable, List, Tuple

from utils.constants import HOSTNAME_MAX_LEN, MAX_TARGETS_PER_REQUEST
from utils.errors import ValidationFailure


_LABEL_RE = re.compile(r"^(?!-)[A-Za-z0-9-]{1,63}(?<!-)$")


def is_ip(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def validate_target(target: str) -> Tuple[bool, str]:
    """
    Validate that target is a single IP address or a hostname.

    Subnets are rejected: one target maps to exactly one host snapshot.

    Returns:
        (is_valid, error_message) tuple
    """
    if not target or not isinstance(target, str):
        return (False, "Target must be a non-empty string")

    target = target.strip()
    if not target:
        return (False, "Target must be a non-empty string")

    if is_ip(target):
        return (True, "")

    if "/" in target:
        return (False, f"Subnets are not accepted: {target!r}")

    name = target[:-1] if target.endswith(".") else target
    if len(name) > HOSTNAME_MAX_LEN:
        return (False, f"Hostname too long: {len(name)} > {HOSTNAME_MAX_LEN}")

    labels = name.split(".")
    if not all(_LABEL_RE.match(lbl) for lbl in labels):
        return (False, f"Invalid IP address or hostname: {target!r}")

    # all-numeric dotted names are malformed IPs, not hostnames
    if all(lbl.isdigit() for lbl in labels):
        return (False, f"Invalid IP address: {target!r}")

    return (True, "")


def validate_targets(targets: Iterable[str],
                     max_targets: int = MAX_TARGETS_PER_REQUEST) -> List[str]:
    """
    Validate a batch of targets. Returns the stripped, de-duplicated list
    in request order.

    Raises ValidationFailure on the first problem; nothing is processed then.
    """
    if targets is None or isinstance(targets, (str, bytes, dict)):
        raise ValidationFailure("targets must be a list of IP addresses or hostnames")

    cleaned: List[str] = []
    seen = set()
    for raw in targets:
        ok, msg = validate_target(raw)
        if not ok:
            raise ValidationFailure(msg)
        t = raw.strip()
        if t not in seen:
            seen.add(t)
            cleaned.append(t)

    if not cleaned:
        raise ValidationFailure("At least one IP or hostname is required")
    if len(cleaned) > max_targets:
        raise ValidationFailure(
            f"Too many targets: {len(cleaned)} (limit {max_targets})"
        )
    return cleaned


__all__ = ["is_ip", "validate_target", "validate_targets"]
