"""FastAPI admin API for Shout Out.

Every error response is JSON of the form ``{"error": message}``. Client
errors never carry stack traces; server errors surface the message only.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from uuid import uuid4

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from shoutout.config import get_config
from shoutout.core.logging import configure_logging
from shoutout.db.connection import close_db
from shoutout.errors import AuthenticationError, SettingsValidationError, UpstreamError
from shoutout.web.routes import (
    admin,
    gifs,
    messages,
    polling,
    salespeople,
    settings,
    sync,
    webhook_logs,
    webhooks,
)

logger = structlog.get_logger()


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        structlog.contextvars.clear_contextvars()

        request_id = request.headers.get("X-Request-ID", str(uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)

        logger.info("request_started", method=request.method, path=request.url.path)
        response = await call_next(request)
        logger.info("request_completed", status_code=response.status_code)
        return response


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    message = str(first.get("msg", "Invalid request"))
    if message.startswith("Value error, "):
        return message[len("Value error, "):]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    return f"{location}: {message}" if location else message


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"error": _validation_message(exc)})

    @app.exception_handler(SettingsValidationError)
    async def settings_exception_handler(request: Request, exc: SettingsValidationError):
        content: dict = {"error": str(exc)}
        if exc.allowed is not None:
            content["allowedSettings"] = exc.allowed
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(AuthenticationError)
    @app.exception_handler(UpstreamError)
    async def upstream_exception_handler(request: Request, exc: Exception):
        logger.error("upstream_failed", error=str(exc))
        return JSONResponse(status_code=502, content={"error": str(exc)})

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("request_failed", error=str(exc))
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    configure_logging(config.log_level, config.json_logs)
    logger.info("admin_api_started")
    yield
    await close_db()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Shout Out Admin API",
        description="Settings, celebration content and sync controls for Shout Out",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.add_middleware(RequestLoggingMiddleware)
    register_exception_handlers(app)

    app.include_router(settings.router)
    app.include_router(gifs.router)
    app.include_router(webhooks.router)
    app.include_router(webhook_logs.router)
    app.include_router(messages.router)
    app.include_router(salespeople.router)
    app.include_router(polling.router)
    app.include_router(admin.router)
    app.include_router(sync.router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
