"""
Doorstep Guard: fraud and anomaly detection engine for a doorstep-banking portal.

Scans service transactions, support tickets and the user/agent registry,
derives entity-level risk alerts from aggregated behavior, and keeps those
alerts in a store with an explicit review lifecycle. Modular architecture:
record sources, analysis engine, alert store, scheduler and API server.
"""

__version__ = "0.1.0"
