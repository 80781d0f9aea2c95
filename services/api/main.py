from __future__ import annotations

from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.concurrency import run_in_threadpool

from core.auth.tokens import load_public_key
from core.channels.resolver import ChannelResolver
from core.exceptions import ChannelServeError
from core.settings import Settings, get_settings
from core.storage import ObjectStorage, create_storage
from services.api.auth import require_credential
from services.api.exception_handlers import channel_serve_exception_handler
from services.api.middleware import RequestLoggingMiddleware
from services.api.routes import router as channel_router
from services.api.systemd import notify_ready


def create_app(
    settings: Settings | None = None,
    *,
    storage: ObjectStorage | None = None,
    public_key: Any = None,
) -> FastAPI:
    """Build the redirect service.

    Authentication is decided here, once: with neither ``public_key`` nor
    ``settings.auth.jwt_public_key_path`` the channel routes are public.
    """
    settings = settings or get_settings()
    storage = storage or create_storage(settings.storage)
    if public_key is None and settings.auth.jwt_public_key_path is not None:
        public_key = load_public_key(settings.auth.jwt_public_key_path)

    app = FastAPI(
        title="Channel Server",
        version="0.1.0",
        description="Redirects channel and permanent tarball URLs to presigned bucket URLs",
    )
    app.state.settings = settings
    app.state.storage = storage
    app.state.resolver = ChannelResolver(storage)
    app.state.public_key = public_key

    if public_key is None:
        logger.warning("No JWT public key configured; serving without authentication")
        app.include_router(channel_router)
    else:
        app.include_router(channel_router, dependencies=[Depends(require_credential)])

    app.add_middleware(RequestLoggingMiddleware)

    @app.on_event("startup")
    async def _preload_channels() -> None:
        if settings.server.preload_channels:
            channels = await run_in_threadpool(app.state.resolver.preload)
            logger.info("Serving {count} channel(s)", count=len(channels))
        notify_ready()

    @app.get("/healthz", tags=["meta"])
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    app.add_exception_handler(ChannelServeError, channel_serve_exception_handler)

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.opt(exception=exc).error("Unhandled exception on {path}", path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": type(exc).__name__, "message": "Internal server error"},
        )

    return app


__all__ = ["create_app"]
