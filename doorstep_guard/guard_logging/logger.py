"""
Structured JSON logging for scans, sources and alert reviews.

Every line carries event_type, level, logger and an ISO timestamp. Scan
context (scan_id, and source inside adapter workers) lives in structlog
contextvars, so logs from the store merge and from source threads are
tagged with the scan that produced them without passing a logger around.

Uses only stdlib logging and structlog; no doorstep_guard imports to avoid circular imports.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
from typing import Any, Iterator

import structlog
from structlog.contextvars import bound_contextvars

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# json for deployments, console for local runs
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

SCAN_LOGGER_NAME = "doorstep_guard.scan"


def _event_type(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Dashboards key on event_type; structlog calls it event."""
    if "event" in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.format_exc_info,
    ]
    if LOG_FORMAT == "json":
        processors += [_event_type, structlog.processors.JSONRenderer(default=str)]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

        logger = get_logger(__name__)
        logger.info("alert_created", alert_id="sa-3f2c...", category="suspicious_activity")
    """
    return structlog.get_logger(name).bind(logger=name)


@contextlib.contextmanager
def scan_context(scan_id: str) -> Iterator[structlog.BoundLogger]:
    """
    Bind scan_id for everything logged inside the block and yield the scan logger.

    Worker threads only see the binding when run in a copy of the caller's
    context (contextvars.copy_context().run).
    """
    with bound_contextvars(scan_id=scan_id):
        yield get_logger(SCAN_LOGGER_NAME)


@contextlib.contextmanager
def source_context(source: str) -> Iterator[None]:
    """Bind the record source name inside an adapter call."""
    with bound_contextvars(source=source):
        yield
