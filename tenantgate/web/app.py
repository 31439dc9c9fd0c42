"""FastAPI application factory."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Annotated

import structlog
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantgate.config.logging import setup_logging
from tenantgate.config.settings import APPLICATION_HEADER, get_settings
from tenantgate.exceptions import ContextMissingError
from tenantgate.storage.database import init_db
from tenantgate.web.dependencies import get_db_engine
from tenantgate.web.health import check_health
from tenantgate.web.middleware import RequestIDMiddleware, TenantContextMiddleware
from tenantgate.web.routes.auth import router as auth_router

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.auto_create_tables:
        await init_db()
        logger.info("tables_created")
    yield


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="tenantgate",
        description="Multi-tenant email/password authentication gateway",
        version="0.1.0",
        lifespan=_lifespan,
    )

    # Missing tenant scope is a wiring bug, never an auth failure
    @app.exception_handler(ContextMissingError)
    async def context_missing_handler(request: Request, exc: ContextMissingError) -> JSONResponse:
        logger.error("tenant_context_missing", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "error": "INTERNAL_SERVER_ERROR",
                "message": "Tenant scope was not established",
            },
        )

    # Middleware (last added runs first)
    app.add_middleware(TenantContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", APPLICATION_HEADER, "X-Request-ID"],
        expose_headers=["Set-Cookie"],
    )
    app.add_middleware(RequestIDMiddleware)

    app.include_router(auth_router)

    @app.get("/health")
    async def health_check(
        engine: Annotated[AsyncEngine, Depends(get_db_engine)],
    ) -> dict[str, object]:
        return await check_health(engine)

    logger.info("app_created")
    return app
