"""
Application settings and rule thresholds.

- get_settings(): service wiring (alert store URL, record source, intervals, API bind).
- load_rule_config(): detection thresholds, from env overrides and an optional
  JSON file (GUARD_RULES_FILE), so rules can be tuned without a redeploy.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from doorstep_guard.analysis_engine.rules import RuleConfig
from doorstep_guard.config.env import (
    env_bool,
    env_float,
    env_int,
    env_list,
    env_str,
    get_database_url,
)

DEFAULT_SCAN_INTERVAL_SEC = 300.0
DEFAULT_SOURCE_TIMEOUT_SEC = 20.0


@dataclass(frozen=True)
class Settings:
    """Typed service settings resolved from the environment."""

    database_url: str
    portal_api_url: str
    portal_api_token: str
    source_database_url: str
    source_timeout_sec: float
    scan_interval_sec: float
    scheduler_enabled: bool
    api_host: str
    api_port: int


def get_settings() -> Settings:
    """Return the current application settings (read fresh from env each call)."""
    return Settings(
        database_url=get_database_url(),
        portal_api_url=env_str("PORTAL_API_URL"),
        portal_api_token=env_str("PORTAL_API_TOKEN"),
        source_database_url=env_str("SOURCE_DATABASE_URL"),
        source_timeout_sec=env_float("SOURCE_TIMEOUT_SEC", DEFAULT_SOURCE_TIMEOUT_SEC),
        scan_interval_sec=env_float("SCAN_INTERVAL_SEC", DEFAULT_SCAN_INTERVAL_SEC),
        scheduler_enabled=env_bool("SCHEDULER_ENABLED", True),
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", 8000),
    )


def _to_decimal(name: str, value: Any) -> Decimal:
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"{name}: {value!r} is not a valid amount") from e


def _coerce(name: str, value: Any) -> Any:
    """Coerce one raw override (env string or JSON value) to the RuleConfig field type."""
    if name == "suspicious_amounts":
        items = value.split(",") if isinstance(value, str) else value
        return frozenset(_to_decimal(name, v) for v in items if str(v).strip())
    if name == "large_value_threshold":
        return _to_decimal(name, value)
    if name == "suspicious_keywords":
        items = value.split(",") if isinstance(value, str) else value
        return tuple(str(v).strip().lower() for v in items if str(v).strip())
    if name == "agent_min_approval_rate":
        return float(value)
    return int(value)


_ENV_OVERRIDES = {
    "suspicious_amounts": "GUARD_SUSPICIOUS_AMOUNTS",
    "large_value_threshold": "GUARD_LARGE_VALUE_THRESHOLD",
    "suspicious_min_count": "GUARD_SUSPICIOUS_MIN_COUNT",
    "large_min_count": "GUARD_LARGE_MIN_COUNT",
    "agent_min_handled": "GUARD_AGENT_MIN_HANDLED",
    "agent_min_approval_rate": "GUARD_AGENT_APPROVAL_RATE",
    "suspicious_keywords": "GUARD_KEYWORDS",
}


def load_rule_config(path: str | Path | None = None) -> RuleConfig:
    """
    Build the RuleConfig: defaults, then the JSON file (path or GUARD_RULES_FILE),
    then individual GUARD_* env variables. Later layers win.

    Raises ValueError on unknown keys or values that cannot be coerced.
    """
    overrides: dict[str, Any] = {}
    rules_file = Path(path) if path else (Path(env_str("GUARD_RULES_FILE")) if env_str("GUARD_RULES_FILE") else None)
    if rules_file is not None:
        data = json.loads(rules_file.read_text(encoding="utf-8"))
        known = {f.name for f in fields(RuleConfig)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown rule config keys: {sorted(unknown)}")
        overrides.update(data)

    for field_name, env_name in _ENV_OVERRIDES.items():
        if field_name in ("suspicious_amounts", "suspicious_keywords"):
            raw_list = env_list(env_name)
            if raw_list is not None:
                overrides[field_name] = raw_list
        elif env_str(env_name):
            overrides[field_name] = env_str(env_name)

    try:
        coerced = {name: _coerce(name, value) for name, value in overrides.items()}
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid rule config: {e}") from e
    return RuleConfig(**coerced)
