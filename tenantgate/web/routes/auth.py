"""Authentication routes: OTP verification, email/password sign-up and sign-in."""

from __future__ import annotations

from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from tenantgate.config.settings import get_settings
from tenantgate.web.auth.session import SESSION_COOKIE
from tenantgate.web.dependencies import get_gateway
from tenantgate.web.gateway import AuthGateway, ClientInfo, GatewayResponse

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

Gateway = Annotated[AuthGateway, Depends(get_gateway)]


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return {}


def _client(request: Request) -> ClientInfo:
    return ClientInfo(
        ip_address=request.client.host if request.client else "",
        user_agent=request.headers.get("user-agent", ""),
    )


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    if authorization.lower().startswith("bearer "):
        return authorization[7:].strip() or None
    return None


def _respond(result: GatewayResponse) -> JSONResponse:
    response = JSONResponse(result.body, status_code=result.status_code)
    settings = get_settings()
    if result.session_token:
        response.set_cookie(
            key=SESSION_COOKIE,
            value=result.session_token,
            httponly=True,
            secure=not settings.debug,
            samesite="lax",
            max_age=settings.session_max_age,
        )
    if result.clear_session:
        response.delete_cookie(SESSION_COOKIE)
    return response


# ---------------------------------------------------------------------------
# One-time passcodes
# ---------------------------------------------------------------------------


@router.post("/send-otp")
async def send_otp(request: Request, gateway: Gateway) -> JSONResponse:
    """Send a verification code to an unverified user of this application."""
    return _respond(await gateway.send_otp(await _json_body(request)))


@router.post("/verify-otp")
async def verify_otp(request: Request, gateway: Gateway) -> JSONResponse:
    return _respond(await gateway.verify_otp(await _json_body(request)))


@router.post("/resend-otp")
async def resend_otp(request: Request, gateway: Gateway) -> JSONResponse:
    """Invalidate the pending code and send a new one."""
    return _respond(await gateway.resend_otp(await _json_body(request)))


# ---------------------------------------------------------------------------
# Email/password
# ---------------------------------------------------------------------------


@router.post("/sign-up/email")
async def sign_up(request: Request, gateway: Gateway) -> JSONResponse:
    return _respond(await gateway.sign_up(await _json_body(request), _client(request)))


@router.post("/sign-in/email")
async def sign_in(request: Request, gateway: Gateway) -> JSONResponse:
    return _respond(await gateway.sign_in(await _json_body(request), _client(request)))


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/session")
async def get_session(request: Request, gateway: Gateway) -> JSONResponse:
    return _respond(await gateway.get_session(_session_token(request)))


@router.post("/sign-out")
async def sign_out(request: Request, gateway: Gateway) -> JSONResponse:
    return _respond(await gateway.sign_out(_session_token(request)))
