"""
FastAPI application exposing the authorization engine.

Other services call /authorize; UIs read /auth/me and /trial/status to
seed their client-side guard.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from orgguard import __version__
from orgguard.api.routes import router
from orgguard.auth.engine import Engine, build_engine
from orgguard.config import Settings, get_settings
from orgguard.core.errors import AuthError, InfraFailure
from orgguard.integrations.sentry import capture_exception, init_sentry

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# =============================================================================
# App Setup
# =============================================================================


def create_app(settings: Settings | None = None, engine: Engine | None = None) -> FastAPI:
    """
    Build the app. An engine passed in is used as-is (tests); otherwise
    one is built from settings at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings)
        init_sentry(settings)

        if getattr(app.state, "engine", None) is None:
            app.state.engine = build_engine(settings)

        logger.info("Authorization API starting", extra={"environment": settings.environment})
        yield

        await app.state.engine.drain()
        logger.info("Authorization API shutting down")

    app = FastAPI(
        title="OrgGuard API",
        description="Authorization and plan entitlements for multi-tenant organizations",
        version=__version__,
        lifespan=lifespan,
    )
    if engine is not None:
        app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(AuthError)
    async def auth_error_handler(request: Request, exc: AuthError):
        if isinstance(exc, InfraFailure):
            logger.error(
                "Infrastructure failure",
                extra={"path": request.url.path, "code": exc.code, "error": exc.message},
            )
            capture_exception(exc, path=request.url.path)
        else:
            logger.info(
                "Request context rejected",
                extra={"path": request.url.path, "code": exc.code},
            )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        # Decision bodies are returned as-is
        content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "orgguard-api"}

    app.include_router(router)
    return app


app = create_app()
