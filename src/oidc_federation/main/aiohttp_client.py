import time

import aiohttp

from oidc_federation.main.logging import get_logger

logger = get_logger(__name__)

SLOW_REQUEST_THRESHOLD_MS = 2000


class AioHttpClient:
    """Shared aiohttp session for calls to identity providers."""

    session: aiohttp.ClientSession = None

    def _create_trace_config(self) -> aiohttp.TraceConfig:
        trace = aiohttp.TraceConfig()

        async def on_request_start(session, trace_config_ctx, params):
            trace_config_ctx._request_start_time = time.perf_counter()

        async def on_request_end(session, trace_config_ctx, params):
            if not hasattr(trace_config_ctx, "_request_start_time"):
                return
            duration_ms = int(
                (time.perf_counter() - trace_config_ctx._request_start_time) * 1000
            )
            extra = {
                "event": "provider_request",
                "method": params.method,
                "host": params.url.host,
                "status": params.response.status,
                "duration_ms": duration_ms,
            }
            if duration_ms > SLOW_REQUEST_THRESHOLD_MS:
                logger.warning(f"Slow identity provider response from {params.url.host}", extra=extra)
            else:
                logger.debug(f"Identity provider responded from {params.url.host}", extra=extra)

        trace.on_request_start.append(on_request_start)
        trace.on_request_end.append(on_request_end)

        return trace

    def start(self, timeout_seconds: float = 30.0):
        timeout = aiohttp.ClientTimeout(total=timeout_seconds, connect=10.0)

        connector = aiohttp.TCPConnector(
            limit=100,
            limit_per_host=30,
            enable_cleanup_closed=True,
            use_dns_cache=True,
            ttl_dns_cache=300,
        )

        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            trace_configs=[self._create_trace_config()],
        )

    async def stop(self):
        if self.session is not None:
            await self.session.close()
        self.session = None

    def __call__(self) -> aiohttp.ClientSession:
        assert self.session is not None
        return self.session


aiohttp_client = AioHttpClient()
