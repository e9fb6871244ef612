"""
Environment variable loading for Doorstep Guard.

- DATABASE_URL: SQLAlchemy URL for the alert store (default: SQLite file in cwd)
- PORTAL_API_URL / PORTAL_API_TOKEN: portal REST API used as record source
- SOURCE_DATABASE_URL: relational mirror of portal collections (alternative source)
- SCAN_INTERVAL_SEC, SOURCE_TIMEOUT_SEC, API_HOST, API_PORT
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is doorstep_guard/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_DATABASE_URL = "sqlite:///doorstep_guard.db"

_TRUTHY = ("1", "true", "yes", "on")


def load_guard_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    load_guard_env()
    return (os.getenv(name) or default).strip()


def env_float(name: str, default: float) -> float:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def env_int(name: str, default: int) -> int:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def env_bool(name: str, default: bool = False) -> bool:
    raw = env_str(name).lower()
    if not raw:
        return default
    return raw in _TRUTHY


def env_list(name: str) -> list[str] | None:
    """Comma-separated list; None when the variable is unset or blank."""
    raw = env_str(name)
    if not raw:
        return None
    return [item.strip() for item in raw.split(",") if item.strip()]


def get_database_url() -> str:
    """Alert store URL: GUARD_DATABASE_URL > DATABASE_URL > SQLite default."""
    return env_str("GUARD_DATABASE_URL") or env_str("DATABASE_URL") or DEFAULT_DATABASE_URL
