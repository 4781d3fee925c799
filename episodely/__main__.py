"""Run the Episodely API with ``python -m episodely``."""

from __future__ import annotations

import logging

import uvicorn

from app.config import get_settings

logger = logging.getLogger(__name__)


def main() -> None:
    config = get_settings()
    logger.info(
        "Starting %s on %s:%s (%s)",
        config.app_name,
        config.server_host,
        config.server_port,
        config.environment,
    )
    uvicorn.run(
        "app.main:app",
        host=config.server_host,
        port=config.server_port,
        reload=config.environment == "development",
    )


if __name__ == "__main__":  # pragma: no cover - runtime entrypoint
    main()
