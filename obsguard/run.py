"""Programmatic uvicorn entry point for obsguard.

Usage:
    python -m obsguard.run     # reads .obsguard/config.yaml via create_app()
    obsguard                   # via pyproject.toml [project.scripts]

Binding comes from OBSGUARD_HOST (default 127.0.0.1) and OBSGUARD_PORT
(default 8080). Binding to 0.0.0.0 is allowed but logs a warning: the
metrics API sits behind this process and should not be exposed by accident.
"""

from __future__ import annotations

import os

import uvicorn

from obsguard.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Uvicorn hardened defaults ────────────────────────────────────────────────

# New connections receive HTTP 503 beyond this many concurrent connections.
UVICORN_LIMIT_CONCURRENCY: int = 100

# OS-level TCP backlog for pending connections.
UVICORN_BACKLOG: int = 50

# Low keep-alive timeout narrows the slow-client window.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080


def main() -> None:
    """Start obsguard with the hardened uvicorn defaults above."""
    host = os.getenv("OBSGUARD_HOST", DEFAULT_HOST)
    port = int(os.getenv("OBSGUARD_PORT", str(DEFAULT_PORT)))
    if host == "0.0.0.0":
        logger.warning("Binding to all interfaces", host=host, port=port)

    uvicorn.run(
        "obsguard.main:create_app",
        factory=True,
        host=host,
        port=port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
