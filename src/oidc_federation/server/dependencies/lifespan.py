from contextlib import asynccontextmanager

from fastapi import FastAPI

from oidc_federation.database.database import sessionmanager
from oidc_federation.main.aiohttp_client import aiohttp_client
from oidc_federation.main.config import get_settings
from oidc_federation.main.logging import get_logger
from oidc_federation.redis.connection import build_redis_client

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await startup(app)
    yield
    await shutdown(app)


async def startup(app: FastAPI):
    settings = get_settings()

    aiohttp_client.start(timeout_seconds=settings.oidc_http_timeout_seconds)
    sessionmanager.init(settings.database_url)
    app.state.redis = build_redis_client(settings)

    if settings.dev:
        await sessionmanager.create_all()

    logger.info(
        "Federated login ready",
        extra={"issuer_count": len(settings.oidc_issuers)},
    )


async def shutdown(app: FastAPI):
    await sessionmanager.close()
    await aiohttp_client.stop()

    redis_client = getattr(app.state, "redis", None)
    if redis_client is not None:
        await redis_client.aclose()
        app.state.redis = None
