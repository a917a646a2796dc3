"""Programmatic uvicorn entry point for BankBot.

Reads host and port from the loaded config (127.0.0.1:3001 by default).

Usage:
    python -m bankbot.run
    bankbot                    # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from bankbot.config import load_config

# Bounded so a burst of scans (each holding a connection up to the poll ceiling)
# cannot exhaust the outbound pool.
UVICORN_LIMIT_CONCURRENCY: int = 100

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the BankBot server.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "bankbot.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
