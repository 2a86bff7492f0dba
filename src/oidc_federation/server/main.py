import uuid

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from oidc_federation.authentication.federation_router import router as federation_router
from oidc_federation.main.config import get_settings
from oidc_federation.main.logging import get_logger
from oidc_federation.main.request_context import clear_request_context, set_request_context
from oidc_federation.server.dependencies.lifespan import lifespan
from oidc_federation.server.exception_handlers import add_exception_handlers

logger = get_logger(__name__)


def get_application():
    settings = get_settings()
    app = FastAPI(
        title="OIDC Federation",
        version=settings.app_version,
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def request_context(request, call_next):
        clear_request_context()
        set_request_context(
            correlation_id=request.headers.get("x-correlation-id") or uuid.uuid4().hex
        )
        try:
            return await call_next(request)
        finally:
            clear_request_context()

    app.include_router(federation_router, prefix=settings.api_prefix)

    # Add handlers of all errors except 500
    add_exception_handlers(app)

    @app.exception_handler(500)
    async def custom_http_500_exception_handler(request, exc):
        logger.error(
            "Unhandled error",
            exc_info=exc,
            extra={"path": request.url.path, "method": request.method},
        )
        return JSONResponse(status_code=500, content={"error": "Something went wrong"})

    return app


app = get_application()


def start():
    uvicorn.run(
        "oidc_federation.server.main:app",
        host="0.0.0.0",
        port=8123,
        reload=get_settings().dev,
    )
