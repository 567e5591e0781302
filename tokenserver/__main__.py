"""Entry point for running the token server."""

import uvicorn

from tokenserver.config import get_config
from tokenserver.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


def main() -> None:
    """Entry point for running the token server."""
    config = get_config()
    configure_logging(config.log_level)

    logger.info("Starting token server", host=config.server_host, port=config.server_port)

    uvicorn.run(
        "tokenserver.server:create_app",
        factory=True,
        host=config.server_host,
        port=config.server_port,
        log_config=None,  # Use our custom structlog configuration
        access_log=False,
    )


if __name__ == "__main__":
    main()
