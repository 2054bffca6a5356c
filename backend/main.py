"""
FastAPI application entry point for the whitelist entitlement engine.

Serves the game-server whitelist export and the admin API for grants,
role configuration and role sync.
"""

import os
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from whitelist_engine.api.routes import (
    admin_grants,
    admin_role_configs,
    admin_sync,
    health,
    whitelist,
)
from whitelist_engine.config.settings import get_settings
from whitelist_engine.entitlements.cache import EntitlementCache
from whitelist_engine.entitlements.errors import WhitelistEngineError
from whitelist_engine.integrations.discord.exceptions import GatewayError
from whitelist_engine.integrations.discord.gateway import DiscordGuildGateway, build_client

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    logger.info("Starting whitelist entitlement engine")

    settings = get_settings()
    app.state.settings = settings
    app.state.entitlement_cache = EntitlementCache(
        ttl_seconds=settings.cache_ttl_seconds,
        default_group=settings.default_whitelist_group,
    )

    if not os.getenv("DATABASE_URL"):
        logger.error("DATABASE_URL is not set. Database-backed endpoints will return 503.")

    client = None
    app.state.guild_gateway = None
    if settings.discord_bot_token and settings.discord_guild_id:
        client = build_client()
        try:
            # HTTP-only login; member and guild fetches do not need the websocket
            await client.login(settings.discord_bot_token)
            app.state.guild_gateway = DiscordGuildGateway(client, settings.discord_guild_id)
            logger.info("Discord gateway ready", extra={"guild_id": settings.discord_guild_id})
        except Exception as e:
            logger.error(
                "Discord login failed, role sync disabled",
                extra={"error": f"{type(e).__name__}: {e}"},
            )
    else:
        logger.warning(
            "Discord not configured (DISCORD_BOT_TOKEN/DISCORD_GUILD_ID missing). "
            "Role sync endpoints will return 503."
        )

    yield

    # Shutdown
    if client is not None:
        await client.close()
    logger.info("Shutting down whitelist entitlement engine")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(WhitelistEngineError)
    async def whitelist_engine_error_handler(request: Request, exc: WhitelistEngineError):
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        code = status.HTTP_404_NOT_FOUND if exc.status_code == 404 else status.HTTP_502_BAD_GATEWAY
        return JSONResponse(status_code=code, content={"error": "gateway_error", "message": exc.message})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle unhandled exceptions with proper logging."""
        logger.error(
            "Unhandled exception",
            extra={
                "error": str(exc),
                "error_type": type(exc).__name__,
                "path": request.url.path
            },
            exc_info=True
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "internal_error", "message": "An unexpected error occurred"},
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Whitelist Entitlement Engine",
        description="Discord-role driven whitelist and staff access for game servers",
        version="0.1.0",
        lifespan=lifespan
    )

    # Health and export routes (no actor header)
    app.include_router(health.router)
    app.include_router(whitelist.router)

    # Admin routes (require X-Actor-Id)
    app.include_router(admin_grants.router)
    app.include_router(admin_role_configs.router)
    app.include_router(admin_sync.router)

    register_exception_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "development"
    )
