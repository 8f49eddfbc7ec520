"""PortLedger Utils"""
from utils.logger     import get_logger, log
from utils.validators import validate_target, validate_targets
from utils.constants  import PortStatus, ChangeKind, TargetStage, TIMING_PROFILES
from utils.errors     import (PortLedgerError, ValidationFailure, ProbeFailure,
                              ParseFailure, NoHostFailure, TimeFailure,
                              PersistenceFailure)
__all__ = ["get_logger", "log", "validate_target", "validate_targets",
           "PortStatus", "ChangeKind", "TargetStage", "TIMING_PROFILES",
           "PortLedgerError", "ValidationFailure", "ProbeFailure",
           "ParseFailure", "NoHostFailure", "TimeFailure", "PersistenceFailure"]
