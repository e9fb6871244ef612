"""
Configuration management for Doorstep Guard.

Loads settings from environment variables (and .env), plus the tunable
detection thresholds passed into the rule evaluator.
"""

from doorstep_guard.config.settings import Settings, get_settings, load_rule_config  # noqa: F401

__all__ = ["Settings", "get_settings", "load_rule_config"]
