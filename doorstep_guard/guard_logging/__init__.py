"""
Structured logging for Doorstep Guard.

JSON logs with timestamp, event_type, and scan/alert context.
Use get_logger() in all engine modules for aggregation-friendly output.
"""

from doorstep_guard.guard_logging.logger import get_logger, scan_context, source_context

__all__ = ["get_logger", "scan_context", "source_context"]
