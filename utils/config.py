"""
utils/config.py
Process configuration, built once at start-up and passed down explicitly.

YAML layout (every key optional):

    db_path: portledger.db
    log_level: INFO
    probe:
      binary: nmap
      ports: "0-1000"
      timing: insane
      open_only: true
      timeout_s: null        # null -> timing profile default
      max_concurrent: null   # null -> timing profile default
    api:
      host: 127.0.0.1
      port: 5000
      secret_key: ""
      max_targets: 256
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, Optional

from utils.constants import DEFAULT_PORT_SPEC, DEFAULT_TIMING, MAX_TARGETS_PER_REQUEST


@dataclass(frozen=True)
class ProbeConfig:
    binary: str = "nmap"
    ports: str = DEFAULT_PORT_SPEC
    timing: str = DEFAULT_TIMING
    open_only: bool = True
    timeout_s: Optional[float] = None
    max_concurrent: Optional[int] = None


@dataclass(frozen=True)
class ApiConfig:
    host: str = "127.0.0.1"
    port: int = 5000
    secret_key: str = ""
    max_targets: int = MAX_TARGETS_PER_REQUEST


@dataclass(frozen=True)
class AppConfig:
    db_path: str = "portledger.db"
    log_level: str = "INFO"
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    api: ApiConfig = field(default_factory=ApiConfig)

    def with_overrides(self, **kw: Any) -> "AppConfig":
        """Return a copy with top-level or dotted ("probe.ports") keys replaced.
        None values are skipped so unset CLI flags keep file values."""
        top: Dict[str, Any] = {}
        probe: Dict[str, Any] = {}
        api: Dict[str, Any] = {}
        for key, value in kw.items():
            if value is None:
                continue
            section, _, name = key.rpartition(".")
            {"": top, "probe": probe, "api": api}[section][name] = value
        cfg = replace(self, **top) if top else self
        if probe:
            cfg = replace(cfg, probe=replace(cfg.probe, **probe))
        if api:
            cfg = replace(cfg, api=replace(cfg.api, **api))
        _check(cfg)
        return cfg


def _pick(cls, raw: Any, section: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"config section {section!r} must be a mapping")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def _check(cfg: AppConfig) -> None:
    p, a = cfg.probe, cfg.api
    if p.timeout_s is not None and float(p.timeout_s) <= 0:
        raise ValueError("probe.timeout_s must be positive")
    if p.max_concurrent is not None and int(p.max_concurrent) < 1:
        raise ValueError("probe.max_concurrent must be >= 1")
    if not (0 < int(a.port) < 65536):
        raise ValueError(f"api.port out of range: {a.port}")
    if int(a.max_targets) < 1:
        raise ValueError("api.max_targets must be >= 1")


def config_from_dict(raw: Dict[str, Any]) -> AppConfig:
    raw = raw or {}
    top_known = {"db_path", "log_level"}
    cfg = AppConfig(
        probe=_pick(ProbeConfig, raw.get("probe"), "probe"),
        api=_pick(ApiConfig, raw.get("api"), "api"),
        **{k: v for k, v in raw.items() if k in top_known},
    )
    _check(cfg)
    return cfg


def load_config(path: str) -> AppConfig:
    """Read YAML config; a missing file gives the defaults."""
    import yaml
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        return AppConfig()
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return config_from_dict(raw)


__all__ = ["AppConfig", "ProbeConfig", "ApiConfig", "config_from_dict", "load_config"]
