"""
Token server ASGI application.

Serves the token endpoint, the userinfo endpoint and a health check on a single port.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from tokenserver.config import Config, get_config
from tokenserver.handlers.health import VERSION, health
from tokenserver.handlers.token import token_endpoint
from tokenserver.handlers.userinfo import userinfo_endpoint
from tokenserver.host.wiring import TokenServer, build_token_server
from tokenserver.middleware.oauth import BearerTokenMiddleware
from tokenserver.utils.logging import get_logger

logger = get_logger(__name__)


def create_app(config: Config | None = None, token_server: TokenServer | None = None) -> FastAPI:
    """
    Build the application.

    Args:
        config: Defaults to the environment configuration.
        token_server: Prebuilt collaborators; built from `config` at startup when omitted.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Manage application lifespan (startup and shutdown)."""
        logger.info("Starting token server", version=VERSION)
        logger.info(
            "Configuration loaded",
            environment=config.environment,
            log_level=config.log_level,
            issuer=config.issuer_uri,
            host_profile=config.host_profile,
        )
        app.state.token_server = token_server or build_token_server(config)
        yield
        logger.info("Shutting down token server")

    app = FastAPI(
        title="Token Server",
        description="OAuth 2.0 / OpenID Connect token endpoint.",
        version=VERSION,
        lifespan=lifespan,
    )
    if token_server is not None:
        # Usable without running the lifespan
        app.state.token_server = token_server

    app.add_api_route(config.token_endpoint_path, token_endpoint, methods=["POST"])
    app.add_api_route(config.userinfo_endpoint_path, userinfo_endpoint, methods=["GET", "POST"])
    app.add_api_route("/health", health, methods=["GET"])
    logger.info(
        "Mounted endpoints",
        token_endpoint=config.token_endpoint_path,
        userinfo_endpoint=config.userinfo_endpoint_path,
    )

    app.add_middleware(
        BearerTokenMiddleware,
        exclude_paths=[
            "/health",
            config.token_endpoint_path,
            "/docs",
            "/openapi.json",
        ],
        issuer=config.issuer_uri,
    )
    return app
