from __future__ import annotations

import json
from pathlib import Path

import pytest

from schemaguard.core.config import DEFAULT_AUDIT_PATH, EnforcementConfig, load_config

_ENV_KEYS = (
    "SCHEMAGUARD_POST_UPDATE_CHECKS",
    "SCHEMAGUARD_PASSWORD_ROUNDS",
    "SCHEMAGUARD_ENCRYPTION_KEY",
    "SCHEMAGUARD_AUDIT_ENABLED",
    "SCHEMAGUARD_AUDIT_PATH",
    "SCHEMAGUARD_METRICS_ENABLED",
    "SCHEMAGUARD_CONFIG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults():
    cfg = load_config()
    assert cfg == EnforcementConfig()
    assert cfg.post_update_checks == "schema"
    assert cfg.password_rounds == 12
    assert cfg.encryption_key is None
    assert cfg.audit_enabled is False
    assert cfg.audit_path == DEFAULT_AUDIT_PATH
    assert cfg.metrics_enabled is True


def test_environment(monkeypatch, tmp_path):
    monkeypatch.setenv("SCHEMAGUARD_POST_UPDATE_CHECKS", " Always ")
    monkeypatch.setenv("SCHEMAGUARD_PASSWORD_ROUNDS", "6")
    monkeypatch.setenv("SCHEMAGUARD_ENCRYPTION_KEY", "abc")
    monkeypatch.setenv("SCHEMAGUARD_AUDIT_ENABLED", "yes")
    monkeypatch.setenv("SCHEMAGUARD_AUDIT_PATH", str(tmp_path / "a.log"))
    monkeypatch.setenv("SCHEMAGUARD_METRICS_ENABLED", "0")

    cfg = load_config()
    assert cfg.post_update_checks == "always"
    assert cfg.password_rounds == 6
    assert cfg.encryption_key == "abc"
    assert cfg.audit_enabled is True
    assert cfg.audit_path == tmp_path / "a.log"
    assert cfg.metrics_enabled is False


def test_invalid_environment_falls_back(monkeypatch):
    monkeypatch.setenv("SCHEMAGUARD_POST_UPDATE_CHECKS", "sometimes")
    monkeypatch.setenv("SCHEMAGUARD_PASSWORD_ROUNDS", "many")
    monkeypatch.setenv("SCHEMAGUARD_AUDIT_ENABLED", "  ")
    cfg = load_config()
    assert cfg.post_update_checks == "schema"
    assert cfg.password_rounds == 12
    assert cfg.audit_enabled is False

    monkeypatch.setenv("SCHEMAGUARD_PASSWORD_ROUNDS", "99")
    assert load_config().password_rounds == 31


def test_yaml_file_overlays_environment(monkeypatch, tmp_path):
    path = tmp_path / "schemaguard.yaml"
    path.write_text(
        "post_update_checks: always\npassword_rounds: 5\naudit_path: logs/audit.log\nunknown_key: 1\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("SCHEMAGUARD_PASSWORD_ROUNDS", "8")
    monkeypatch.setenv("SCHEMAGUARD_ENCRYPTION_KEY", "from-env")

    cfg = load_config(path)
    assert cfg.post_update_checks == "always"
    assert cfg.password_rounds == 5
    assert cfg.audit_path == Path("logs/audit.log")
    assert cfg.encryption_key == "from-env"


def test_json_file_from_environment(monkeypatch, tmp_path):
    path = tmp_path / "schemaguard.json"
    path.write_text(json.dumps({"audit_enabled": True, "metrics_enabled": False}), encoding="utf-8")
    monkeypatch.setenv("SCHEMAGUARD_CONFIG_FILE", str(path))

    cfg = load_config()
    assert cfg.audit_enabled is True
    assert cfg.metrics_enabled is False


def test_empty_file_keeps_environment(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == EnforcementConfig()


def test_bad_files(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "missing.yaml")

    listing = tmp_path / "list.yaml"
    listing.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="must contain a mapping"):
        load_config(listing)

    bad_mode = tmp_path / "mode.yaml"
    bad_mode.write_text("post_update_checks: never\n", encoding="utf-8")
    with pytest.raises(ValueError, match="post_update_checks"):
        load_config(bad_mode)


def test_config_validation():
    with pytest.raises(ValueError):
        EnforcementConfig(post_update_checks="sometimes")
    with pytest.raises(ValueError):
        EnforcementConfig(password_rounds=3)
