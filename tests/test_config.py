"""
Tests for settings and rule threshold loading (env overrides and JSON file).
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from doorstep_guard.analysis_engine.rules import DEFAULT_SUSPICIOUS_KEYWORDS
from doorstep_guard.config import get_settings, load_rule_config
from doorstep_guard.config.env import DEFAULT_DATABASE_URL
from doorstep_guard.sources import build_record_source

GUARD_VARS = (
    "GUARD_SUSPICIOUS_AMOUNTS",
    "GUARD_LARGE_VALUE_THRESHOLD",
    "GUARD_SUSPICIOUS_MIN_COUNT",
    "GUARD_LARGE_MIN_COUNT",
    "GUARD_AGENT_MIN_HANDLED",
    "GUARD_AGENT_APPROVAL_RATE",
    "GUARD_KEYWORDS",
    "GUARD_RULES_FILE",
    "GUARD_DATABASE_URL",
    "DATABASE_URL",
    "PORTAL_API_URL",
    "SOURCE_DATABASE_URL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in GUARD_VARS:
        monkeypatch.setenv(name, "")


def test_defaults():
    cfg = load_rule_config()
    assert cfg.suspicious_amounts == frozenset(Decimal(v) for v in (999, 1999, 4999, 9999))
    assert cfg.large_value_threshold == Decimal(8000)
    assert cfg.suspicious_min_count == 2
    assert cfg.large_min_count == 3
    assert cfg.agent_min_handled == 10
    assert cfg.agent_min_approval_rate == 0.95
    assert cfg.suspicious_keywords == DEFAULT_SUSPICIOUS_KEYWORDS


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("GUARD_SUSPICIOUS_AMOUNTS", "99, 199")
    monkeypatch.setenv("GUARD_LARGE_VALUE_THRESHOLD", "15000")
    monkeypatch.setenv("GUARD_AGENT_APPROVAL_RATE", "0.9")
    monkeypatch.setenv("GUARD_KEYWORDS", "Mule Account,hawala")
    cfg = load_rule_config()
    assert cfg.suspicious_amounts == frozenset({Decimal(99), Decimal(199)})
    assert cfg.large_value_threshold == Decimal(15000)
    assert cfg.agent_min_approval_rate == 0.9
    assert cfg.suspicious_keywords == ("mule account", "hawala")


def test_json_file_then_env(tmp_path, monkeypatch):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"large_min_count": 5, "agent_min_handled": 20}), encoding="utf-8")
    monkeypatch.setenv("GUARD_RULES_FILE", str(path))
    monkeypatch.setenv("GUARD_AGENT_MIN_HANDLED", "30")
    cfg = load_rule_config()
    assert cfg.large_min_count == 5
    assert cfg.agent_min_handled == 30


def test_unknown_json_key(tmp_path):
    path = tmp_path / "rules.json"
    path.write_text(json.dumps({"not_a_rule": 1}), encoding="utf-8")
    with pytest.raises(ValueError, match="not_a_rule"):
        load_rule_config(path)


def test_invalid_value(monkeypatch):
    monkeypatch.setenv("GUARD_LARGE_MIN_COUNT", "three")
    with pytest.raises(ValueError):
        load_rule_config()
    monkeypatch.setenv("GUARD_LARGE_MIN_COUNT", "")
    monkeypatch.setenv("GUARD_AGENT_APPROVAL_RATE", "2")
    with pytest.raises(ValueError):
        load_rule_config()


def test_settings(monkeypatch):
    settings = get_settings()
    assert settings.database_url == DEFAULT_DATABASE_URL
    monkeypatch.setenv("DATABASE_URL", "sqlite:///other.db")
    monkeypatch.setenv("SCAN_INTERVAL_SEC", "60")
    settings = get_settings()
    assert settings.database_url == "sqlite:///other.db"
    assert settings.scan_interval_sec == 60.0
    monkeypatch.setenv("SCAN_INTERVAL_SEC", "soon")
    with pytest.raises(ValueError):
        get_settings()


def test_build_record_source(monkeypatch, tmp_path):
    from doorstep_guard.sources.portal_api import PortalApiRecordSource
    from doorstep_guard.sources.sql_source import SQLRecordSource

    with pytest.raises(ValueError):
        build_record_source(get_settings())
    monkeypatch.setenv("SOURCE_DATABASE_URL", f"sqlite:///{tmp_path / 'mirror.db'}")
    assert isinstance(build_record_source(get_settings()), SQLRecordSource)
    monkeypatch.setenv("PORTAL_API_URL", "https://portal.example.com")
    assert isinstance(build_record_source(get_settings()), PortalApiRecordSource)
