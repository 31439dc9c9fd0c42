"""FastAPI middleware: request ID injection and tenant scoping."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

from tenantgate.config.settings import APPLICATION_HEADER
from tenantgate.web.tenant_context import tenant_scope

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adds a unique X-Request-ID header to every response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        structlog.contextvars.bind_contextvars(request_id=request_id)
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Requires the application header on auth paths and binds it for the request.

    Everything downstream of ``call_next`` (routes, the credential engine, the
    OTP service) runs with the tenant bound, and the binding is dropped when
    the request completes.
    """

    def __init__(self, app: object, prefix: str = "/api/auth/") -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not request.url.path.startswith(self._prefix) or request.method == "OPTIONS":
            return await call_next(request)

        application = request.headers.get(APPLICATION_HEADER, "").strip()
        if not application:
            logger.info("application_header_missing", path=request.url.path)
            return JSONResponse(
                {"error": "BAD_REQUEST", "message": f"{APPLICATION_HEADER} header is required"},
                status_code=400,
            )

        structlog.contextvars.bind_contextvars(application=application)
        try:
            with tenant_scope(application):
                return await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("application")
