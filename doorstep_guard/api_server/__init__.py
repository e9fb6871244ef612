"""
API server package: HTTP interface for the admin dashboard.

Serves alerts and summary counts, accepts reviewer status decisions and
on-demand scans; delegates to the lifecycle manager and scan engine.
"""
