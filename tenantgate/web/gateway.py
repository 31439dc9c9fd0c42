"""Auth gateway: the request/response boundary in front of the OTP service
and the credential engine.

Every method runs inside the tenant scope bound by
:class:`~tenantgate.web.middleware.TenantContextMiddleware`, so any lookup the
credential engine performs resolves against the caller's application.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog

from tenantgate.exceptions import InvalidCredentialsError, UserAlreadyExistsError
from tenantgate.models.api import ErrorResponse, SessionResponse, UserResponse
from tenantgate.web.auth.otp_service import OtpResult
from tenantgate.web.tenant_context import require_tenant
from tenantgate.web.validation import (
    validate_email_payload,
    validate_sign_in,
    validate_sign_up,
    validate_verify_payload,
)

if TYPE_CHECKING:
    from tenantgate.models.database import Session, User
    from tenantgate.storage.repositories.users import IdentityDirectory
    from tenantgate.web.auth.credentials import CredentialEngine
    from tenantgate.web.auth.otp_service import OtpService
    from tenantgate.web.auth.session import SessionAuth

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ClientInfo:
    ip_address: str = ""
    user_agent: str = ""


@dataclass(frozen=True, slots=True)
class GatewayResponse:
    """Status, JSON body and the session cookie change the route should apply."""

    status_code: int
    body: dict[str, Any]
    session_token: str | None = None
    clear_session: bool = False


def _error(status_code: int, error: str, message: str) -> GatewayResponse:
    return GatewayResponse(
        status_code=status_code,
        body=ErrorResponse(error=error, message=message).model_dump(),
    )


def _otp_response(result: OtpResult) -> GatewayResponse:
    return GatewayResponse(status_code=200 if result.success else 400, body=result.to_response())


def _auth_response(user: User, session: Session) -> GatewayResponse:
    return GatewayResponse(
        status_code=200,
        body={
            "token": session.token,
            "user": UserResponse.model_validate(user).model_dump(by_alias=True, mode="json"),
        },
        session_token=session.token,
    )


class AuthGateway:
    """Translates HTTP payloads into OTP and credential operations."""

    def __init__(
        self,
        otp_service: OtpService,
        directory: IdentityDirectory,
        engine: CredentialEngine,
        sessions: SessionAuth,
    ) -> None:
        self._otp = otp_service
        self._directory = directory
        self._engine = engine
        self._sessions = sessions

    # ------------------------------------------------------------------
    # OTP
    # ------------------------------------------------------------------

    async def send_otp(self, body: Any) -> GatewayResponse:
        parsed = validate_email_payload(body)
        if not parsed.ok or parsed.value is None:
            return _otp_response(OtpResult.invalid(parsed.message))
        result = await self._otp.send_otp(parsed.value.email, require_tenant())
        return _otp_response(result)

    async def verify_otp(self, body: Any) -> GatewayResponse:
        parsed = validate_verify_payload(body)
        if not parsed.ok or parsed.value is None:
            return _otp_response(OtpResult.invalid(parsed.message))
        result = await self._otp.verify_otp(parsed.value.email, parsed.value.otp, require_tenant())
        return _otp_response(result)

    async def resend_otp(self, body: Any) -> GatewayResponse:
        parsed = validate_email_payload(body)
        if not parsed.ok or parsed.value is None:
            return _otp_response(OtpResult.invalid(parsed.message))
        result = await self._otp.resend_otp(parsed.value.email, require_tenant())
        return _otp_response(result)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def sign_up(self, body: Any, client: ClientInfo | None = None) -> GatewayResponse:
        client = client or ClientInfo()
        parsed = validate_sign_up(body, application=require_tenant())
        if not parsed.ok or parsed.value is None:
            return _error(400, "BAD_REQUEST", parsed.message)
        payload = parsed.value

        try:
            user, session = await self._engine.sign_up(
                email=payload.email,
                password=payload.password,
                application=payload.application,
                name=payload.name,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        except UserAlreadyExistsError:
            return _error(422, "USER_ALREADY_EXISTS", "User already exists")
        return _auth_response(user, session)

    async def sign_in(self, body: Any, client: ClientInfo | None = None) -> GatewayResponse:
        client = client or ClientInfo()
        application = require_tenant()
        email = body.get("email") if isinstance(body, dict) else None
        if not isinstance(email, str) or not email.strip():
            return _error(400, "BAD_REQUEST", "email is required for sign-in")

        # Membership pre-check: credentials are never verified for the wrong tenant.
        member = await self._directory.find_by_email_and_tenant(email.strip(), application)
        if member is None:
            logger.info("sign_in_application_mismatch", application=application)
            return _error(
                403, "APPLICATION_MISMATCH", "User is not registered for this application"
            )

        parsed = validate_sign_in(body)
        if not parsed.ok or parsed.value is None:
            return _error(400, "BAD_REQUEST", parsed.message)

        try:
            user, session = await self._engine.sign_in(
                email=parsed.value.email,
                password=parsed.value.password,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
            )
        except InvalidCredentialsError:
            return _error(401, "INVALID_CREDENTIALS", "Invalid email or password")
        return _auth_response(user, session)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def get_session(self, token: str | None) -> GatewayResponse:
        session = await self._sessions.validate_session(token or "", require_tenant())
        if session is None:
            return GatewayResponse(status_code=404, body={"message": "No session found"})
        user = await self._directory.get_by_id(session.user_id)
        if user is None:
            return GatewayResponse(status_code=404, body={"message": "No session found"})
        return GatewayResponse(
            status_code=200,
            body={
                "session": SessionResponse.model_validate(session).model_dump(
                    by_alias=True, mode="json"
                ),
                "user": UserResponse.model_validate(user).model_dump(by_alias=True, mode="json"),
            },
        )

    async def sign_out(self, token: str | None) -> GatewayResponse:
        if token and await self._sessions.validate_session(token, require_tenant()):
            await self._sessions.destroy_session(token)
        return GatewayResponse(status_code=200, body={"success": True}, clear_session=True)
