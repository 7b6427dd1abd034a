"""Main entry point - runs the relayer API."""

import logging

import uvicorn

from metaswap.api.app import create_app
from metaswap.config import get_settings

logger = logging.getLogger(__name__)


def configure_logging(debug: bool) -> None:
    log_level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    # SQL echo is noisy at DEBUG
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def main() -> None:
    """Run the API server."""
    settings = get_settings()
    configure_logging(settings.debug)

    logger.info("Starting metaswap...")
    logger.info(f"Environment: {settings.environment}")
    if settings.mint_enabled:
        logger.warning("Mint endpoint is enabled - do not run like this in production")

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="debug" if settings.debug else "info",
    )


if __name__ == "__main__":
    main()
