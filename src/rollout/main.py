"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from rollout.api.app import create_app
from rollout.config import get_settings
from rollout.infrastructure.observability.logging import setup_logging
from rollout.infrastructure.observability.tracing import setup_tracing


def main() -> None:
    """Run the application."""
    settings = get_settings()
    setup_logging(settings.observability.log_level)
    setup_tracing(settings.observability)

    # One process: runs and their in-process locks live in this event loop.
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.observability.log_level.lower(),
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout,
    )


if __name__ == "__main__":
    main()
