"""
Enforcement configuration.

Values come from environment variables, optionally overlaid by a YAML or JSON
file named in SCHEMAGUARD_CONFIG_FILE:

    post_update_checks: always
    password_rounds: 12
    audit_enabled: true
    audit_path: .schemaguard/audit.log

Environment variables:
    SCHEMAGUARD_POST_UPDATE_CHECKS  schema | always   (default: schema)
    SCHEMAGUARD_PASSWORD_ROUNDS     bcrypt cost factor (default: 12)
    SCHEMAGUARD_ENCRYPTION_KEY      urlsafe base64 AES key (16/24/32 bytes)
    SCHEMAGUARD_AUDIT_ENABLED       1/true/yes (default: off)
    SCHEMAGUARD_AUDIT_PATH          audit log location
    SCHEMAGUARD_METRICS_ENABLED     1/true/yes (default: on)
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

_log = logging.getLogger("schemaguard.config")

POST_UPDATE_MODES = ("schema", "always")

DEFAULT_AUDIT_PATH = Path(".schemaguard") / "audit.log"


@dataclass(frozen=True)
class EnforcementConfig:
    # "schema": only post-update rules declared in the schema run after an update
    # "always": the update rules are re-evaluated against the resulting record too
    post_update_checks: str = "schema"

    # bcrypt cost factor for @password when the attribute gives none
    password_rounds: int = 12

    # key material for @encrypted fields
    encryption_key: Optional[str] = None

    audit_enabled: bool = False
    audit_path: Path = DEFAULT_AUDIT_PATH

    metrics_enabled: bool = True

    def __post_init__(self):
        if self.post_update_checks not in POST_UPDATE_MODES:
            raise ValueError(
                f"post_update_checks must be one of {POST_UPDATE_MODES}, got {self.post_update_checks!r}"
            )
        if not 4 <= int(self.password_rounds) <= 31:
            raise ValueError("password_rounds must be between 4 and 31")


def _env_bool(key: str, default: bool) -> bool:
    raw = os.getenv(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(key: str, default: int) -> int:
    try:
        return int(os.getenv(key, str(default)))
    except (TypeError, ValueError):
        return default


def _env_str(key: str) -> Optional[str]:
    raw = (os.getenv(key) or "").strip()
    return raw or None


def _from_env() -> EnforcementConfig:
    mode = (os.getenv("SCHEMAGUARD_POST_UPDATE_CHECKS") or "schema").strip().lower()
    if mode not in POST_UPDATE_MODES:
        _log.warning("Ignoring invalid SCHEMAGUARD_POST_UPDATE_CHECKS=%r", mode)
        mode = "schema"

    audit_path = _env_str("SCHEMAGUARD_AUDIT_PATH")

    return EnforcementConfig(
        post_update_checks=mode,
        password_rounds=max(4, min(31, _env_int("SCHEMAGUARD_PASSWORD_ROUNDS", 12))),
        encryption_key=_env_str("SCHEMAGUARD_ENCRYPTION_KEY"),
        audit_enabled=_env_bool("SCHEMAGUARD_AUDIT_ENABLED", False),
        audit_path=Path(audit_path) if audit_path else DEFAULT_AUDIT_PATH,
        metrics_enabled=_env_bool("SCHEMAGUARD_METRICS_ENABLED", True),
    )


def _read_file(path: Path) -> Dict[str, Any]:
    raw_text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError:
        data = yaml.safe_load(raw_text)

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file {path} must contain a mapping, got {type(data).__name__}")
    return data


def _overlay(base: EnforcementConfig, data: Dict[str, Any]) -> EnforcementConfig:
    known = {f.name for f in fields(EnforcementConfig)}
    updates: Dict[str, Any] = {}
    for key, value in data.items():
        if key not in known:
            _log.warning("Ignoring unknown config key %r", key)
            continue
        if key == "audit_path" and value is not None:
            value = Path(value)
        updates[key] = value
    return replace(base, **updates)


def load_config(path: Optional[Path] = None) -> EnforcementConfig:
    """
    Build the effective configuration.

    Raises FileNotFoundError when an explicit path (or SCHEMAGUARD_CONFIG_FILE)
    does not exist, ValueError when the file is not a mapping.
    """
    cfg = _from_env()

    if path is None:
        env_path = _env_str("SCHEMAGUARD_CONFIG_FILE")
        path = Path(env_path) if env_path else None

    if path is None:
        return cfg

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    cfg = _overlay(cfg, _read_file(path))
    _log.info("Loaded enforcement config from %s (post_update_checks=%s)", path, cfg.post_update_checks)
    return cfg
