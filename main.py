"""
Main entrypoint: FastAPI server with the periodic scanner in a background thread.

The scanner is started by the API lifespan (SCHEDULER_ENABLED, SCAN_INTERVAL_SEC)
and reads from PORTAL_API_URL or SOURCE_DATABASE_URL; alerts go to DATABASE_URL.

API only: uvicorn doorstep_guard.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os

# Configure structured JSON logging before other imports that may log
from doorstep_guard.guard_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Run the FastAPI server in the main thread."""
    from doorstep_guard.config import get_settings

    settings = get_settings()

    from doorstep_guard.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=settings.api_host, port=settings.api_port)
    uvicorn.run(
        app,
        host=settings.api_host,
        port=settings.api_port,
        log_level=os.getenv("LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
