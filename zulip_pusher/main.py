import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from zulip_pusher import __version__
from zulip_pusher.api import root_router
from zulip_pusher.configs import StoreBackend, configs
from zulip_pusher.core.logger import LOGGING_CONFIG

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"Zulip web pusher {__version__} starting (store: {configs.Store.value})")

    if configs.Store == StoreBackend.REDIS:
        from zulip_pusher.infra.redis import health_check

        if not await health_check():
            logger.warning("Redis is not reachable; subscription requests will fail until it is")

    if not configs.Vapid.configured:
        logger.warning("VAPID keys not configured; /test-push and the poller are disabled")

    yield

    # Graceful shutdown: close the outbound HTTP client and the Redis client
    http_client = getattr(app.state, "http_client", None)
    if http_client is not None:
        await http_client.aclose()

    from zulip_pusher.infra.redis import close_redis_client

    await close_redis_client()


app = FastAPI(
    title="Zulip Web Pusher",
    description="Bridges Zulip event queues to filtered Web Push notifications",
    version=__version__,
    lifespan=lifespan,
    redirect_slashes=False,
)

# CORS-open: the registering page is served from any origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type"],
)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    detail = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"error": detail.lower()}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"invalid request: {field}: {first.get('msg')}" if field else f"invalid request: {first.get('msg')}"
    else:
        message = "invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "internal error"})


app.include_router(root_router)


def run() -> None:
    uvicorn.run(
        "zulip_pusher.main:app",
        host=configs.Host,
        port=configs.Port,
        log_config=LOGGING_CONFIG,
        reload=configs.Debug,
        reload_excludes=["tests"],
    )


if __name__ == "__main__":
    run()
