"""Redis connection helpers for the browser session store."""

from __future__ import annotations

from typing import Any

import redis.asyncio as aioredis

from oidc_federation.main.config import Settings, get_settings


def build_redis_pool_kwargs(settings: Settings | None = None) -> dict[str, Any]:
    """Build keyword arguments for redis.asyncio connection pools."""
    resolved_settings = settings or get_settings()
    kwargs: dict[str, Any] = {
        "decode_responses": True,
        "socket_connect_timeout": resolved_settings.redis_conn_timeout,
        "retry_on_timeout": True,
        "health_check_interval": 30,
    }

    if resolved_settings.redis_db is not None:
        kwargs["db"] = resolved_settings.redis_db

    return kwargs


def build_redis_client(settings: Settings | None = None) -> aioredis.Redis:
    resolved_settings = settings or get_settings()
    redis_url = f"redis://{resolved_settings.redis_host}:{resolved_settings.redis_port}"
    pool = aioredis.ConnectionPool.from_url(
        redis_url, **build_redis_pool_kwargs(resolved_settings)
    )
    return aioredis.Redis(connection_pool=pool)
