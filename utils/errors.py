"""
utils/errors.py
Failure taxonomy shared by every layer.

Each failure carries a stable ``code`` and a ``public_message`` that is safe
to hand back to API clients. The detailed ``str(exc)`` and the chained
``__cause__`` stay in the logs.
"""

from typing import Optional


class PortLedgerError(Exception):
    """Base class for all PortLedger failures."""

    code = "internal_error"
    public_message = "internal error"

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.public_message}


class ValidationFailure(PortLedgerError):
    """Malformed target list. Rejected before any processing."""

    code = "invalid_request"

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return str(self)


class ProbeFailure(PortLedgerError):
    """Prober exited non-zero, could not be started, or timed out."""

    code = "probe_failed"
    public_message = "could not reach host"

    def __init__(self, message: str, target: Optional[str] = None,
                 timed_out: bool = False, returncode: Optional[int] = None):
        super().__init__(message, target)
        self.timed_out = timed_out
        self.returncode = returncode

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["timed_out"] = self.timed_out
        return d


class ParseFailure(PortLedgerError):
    """Prober output is not well-formed."""

    code = "parse_failed"
    public_message = "could not interpret probe output"


class NoHostFailure(ParseFailure):
    """Prober reported zero addresses for the target."""

    code = "host_unreachable"
    public_message = "could not reach host"


class TimeFailure(ParseFailure):
    """Run timestamp missing or unparsable."""


class PersistenceFailure(PortLedgerError):
    """Transactional write or read failed; the snapshot write was rolled back."""

    code = "persist_failed"
    public_message = "could not persist scan results"


__all__ = [
    "PortLedgerError", "ValidationFailure", "ProbeFailure", "ParseFailure",
    "NoHostFailure", "TimeFailure", "PersistenceFailure",
]
