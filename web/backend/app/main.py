"""FastAPI application for the messaging guard.

Provides REST API endpoints wrapping the msgguard package for:
- Threads, messages, read cursors and exports
- Coach contact requests
- Messaging policy and charter acceptance
- Abuse reports and thread freezes
- Messaging suspensions
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from msgguard import __version__
from msgguard.config import Settings, load_settings
from msgguard.engine import MessagingEngine
from msgguard.errors import MessagingError, RateLimited
from msgguard.log import configure_logging, get_logger
from web.backend.app.routers import messages, moderation, policy, suspensions

log = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application; storage is opened by the lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or load_settings()
        configure_logging(resolved.environment, resolved.log_level)
        engine = MessagingEngine(resolved)
        await engine.start()
        app.state.engine = engine
        try:
            yield
        finally:
            await engine.stop()

    app = FastAPI(
        title="Messaging Guard API",
        description=(
            "Access control and moderation for coaching-platform messaging: "
            "thread permissions, content guard, rate limits, charter, reports."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # -----------------------------------------------------------------------
    # CORS middleware (allow all origins for development)
    # -----------------------------------------------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------------------------------------------------------
    # Error mapping
    # -----------------------------------------------------------------------

    @app.exception_handler(MessagingError)
    async def messaging_error_handler(request: Request, exc: MessagingError):
        headers = {}
        if isinstance(exc, RateLimited):
            headers["Retry-After"] = str(exc.retry_after_seconds)
        if exc.http_status >= 500:
            log.error("request_failed", path=request.url.path, code=exc.reason_code)
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict(), headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={
                "error": "Invalid payload.",
                "code": "INVALID_PAYLOAD",
                "details": [
                    {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()
                ],
            },
        )

    # -----------------------------------------------------------------------
    # Include routers
    # -----------------------------------------------------------------------
    app.include_router(messages.router)
    app.include_router(moderation.router)
    app.include_router(policy.router)
    app.include_router(suspensions.router)

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "Messaging Guard API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    @app.get("/health", tags=["meta"])
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    return app


app = create_app()
