"""One-time passcode service: issue, verify and reissue email verification codes.

Per identifier the state moves NONE -> PENDING -> VERIFIED, or PENDING ->
EXPIRED once ``expires_at`` passes (the stale record is removed on the next
verification attempt). Resending replaces the pending record outright, so a
previously mailed code stops working immediately.
"""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import SQLAlchemyError

from tenantgate.exceptions import DeliveryError, StorageError
from tenantgate.models.database import User, _utc_now
from tenantgate.web.auth.mailer import render_otp_email
from tenantgate.web.tenant_context import require_tenant

if TYPE_CHECKING:
    from tenantgate.storage.repositories.users import IdentityDirectory
    from tenantgate.storage.repositories.verifications import DatabaseVerificationStore
    from tenantgate.web.auth.mailer import EmailSender

logger = structlog.get_logger(__name__)

CODE_LENGTH = 6
DEFAULT_TTL_SECONDS = 600


class OtpOutcome(StrEnum):
    SENT = "sent"
    VERIFIED = "verified"
    INVALID_INPUT = "invalid_input"
    USER_NOT_FOUND = "user_not_found"
    ALREADY_VERIFIED = "already_verified"
    NO_OTP_PENDING = "no_otp_pending"
    EXPIRED = "expired"
    INVALID_CODE = "invalid_code"
    DELIVERY_FAILED = "delivery_failed"
    STORAGE_FAILED = "storage_failed"


_MESSAGES: dict[OtpOutcome, str] = {
    OtpOutcome.SENT: "OTP sent successfully",
    OtpOutcome.VERIFIED: "Email verified successfully",
    OtpOutcome.USER_NOT_FOUND: "User not found for this application",
    OtpOutcome.ALREADY_VERIFIED: "Email is already verified",
    OtpOutcome.NO_OTP_PENDING: "No OTP found. Please request a new one.",
    OtpOutcome.EXPIRED: "OTP has expired. Please request a new one.",
    OtpOutcome.INVALID_CODE: "Invalid OTP",
    OtpOutcome.DELIVERY_FAILED: "Failed to send OTP",
    OtpOutcome.STORAGE_FAILED: "Failed to process OTP",
}

# Storage failures are reported per operation
_STORAGE_FAILURE_MESSAGES: dict[str, str] = {
    "send": "Failed to send OTP",
    "verify": "Failed to verify OTP",
    "resend": "Failed to resend OTP",
}


@dataclass(frozen=True, slots=True)
class OtpResult:
    """Outcome of an OTP operation, rendered as ``{success, message, data?}``."""

    success: bool
    outcome: OtpOutcome
    message: str
    expires_in: int | None = None

    @classmethod
    def of(cls, outcome: OtpOutcome, expires_in: int | None = None) -> OtpResult:
        success = outcome in (OtpOutcome.SENT, OtpOutcome.VERIFIED)
        return cls(
            success=success,
            outcome=outcome,
            message=_MESSAGES[outcome],
            expires_in=expires_in,
        )

    @classmethod
    def invalid(cls, message: str) -> OtpResult:
        return cls(success=False, outcome=OtpOutcome.INVALID_INPUT, message=message)

    @classmethod
    def storage_failure(cls, operation: str) -> OtpResult:
        return cls(
            success=False,
            outcome=OtpOutcome.STORAGE_FAILED,
            message=_STORAGE_FAILURE_MESSAGES[operation],
        )

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.expires_in is not None:
            body["data"] = {"expiresIn": self.expires_in}
        return body


def generate_code() -> str:
    """Return a uniformly random, zero-padded 6-digit code."""
    return f"{secrets.randbelow(10**CODE_LENGTH):0{CODE_LENGTH}d}"


class OtpService:
    """Orchestrates the OTP state machine for tenant-scoped users."""

    def __init__(
        self,
        directory: IdentityDirectory,
        store: DatabaseVerificationStore,
        sender: EmailSender,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._directory = directory
        self._store = store
        self._sender = sender
        self._ttl = ttl_seconds
        self._clock = clock

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def send_otp(self, email: str, application_id: str | None = None) -> OtpResult:
        """Issue a fresh code for an unverified user and mail it."""
        application = application_id or require_tenant()
        try:
            checked = await self._eligible_user(email, application)
            if isinstance(checked, OtpResult):
                return checked
            return await self._issue(email.lower(), application)
        except (StorageError, SQLAlchemyError) as exc:
            return self._storage_failure("send", application, exc)

    async def verify_otp(
        self, email: str, code: str, application_id: str | None = None
    ) -> OtpResult:
        """Check ``code`` against the pending record; expiry wins over a wrong code."""
        application = application_id or require_tenant()
        try:
            return await self._verify(email.lower(), code, application)
        except (StorageError, SQLAlchemyError) as exc:
            return self._storage_failure("verify", application, exc)

    async def resend_otp(self, email: str, application_id: str | None = None) -> OtpResult:
        """Invalidate any pending code and issue a new one.

        The delete of the old record and the insert of the new one happen in
        the same store transaction.
        """
        application = application_id or require_tenant()
        try:
            checked = await self._eligible_user(email, application)
            if isinstance(checked, OtpResult):
                return checked
            logger.info("otp_resend_requested", user_id=checked.id, application=application)
            return await self._issue(email.lower(), application)
        except (StorageError, SQLAlchemyError) as exc:
            return self._storage_failure("resend", application, exc)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _verify(self, identifier: str, code: str, application: str) -> OtpResult:
        user = await self._directory.find_by_email_and_tenant(identifier, application)
        if user is None:
            return OtpResult.of(OtpOutcome.USER_NOT_FOUND)

        # Record lookup runs before the verified check so that replaying a
        # consumed code reports NO_OTP_PENDING. A verified user with nothing
        # pending therefore also gets NO_OTP_PENDING, not ALREADY_VERIFIED.
        record = await self._store.get(identifier, application)
        if record is None:
            return OtpResult.of(OtpOutcome.NO_OTP_PENDING)
        if user.email_verified:
            return OtpResult.of(OtpOutcome.ALREADY_VERIFIED)

        if self._clock() > record.expires_at:
            await self._store.delete_by_id(record.id)
            logger.info("otp_expired", user_id=user.id, application=application)
            return OtpResult.of(OtpOutcome.EXPIRED)

        if not hmac.compare_digest(record.value.encode(), code.encode()):
            logger.info("otp_mismatch", user_id=user.id, application=application)
            return OtpResult.of(OtpOutcome.INVALID_CODE)

        # Claim the record first; a concurrent verify that lost the race sees nothing pending.
        if not await self._store.delete_by_id(record.id):
            return OtpResult.of(OtpOutcome.NO_OTP_PENDING)

        await self._directory.mark_email_verified(user.id)
        logger.info("otp_verified", user_id=user.id, application=application)
        return OtpResult.of(OtpOutcome.VERIFIED)

    def _storage_failure(self, operation: str, application: str, exc: Exception) -> OtpResult:
        logger.error(
            "otp_storage_failed", operation=operation, application=application, error=str(exc)
        )
        return OtpResult.storage_failure(operation)

    async def _eligible_user(self, email: str, application: str) -> User | OtpResult:
        user = await self._directory.find_by_email_and_tenant(email, application)
        if user is None:
            return OtpResult.of(OtpOutcome.USER_NOT_FOUND)
        if user.email_verified:
            return OtpResult.of(OtpOutcome.ALREADY_VERIFIED)
        return user

    async def _issue(self, identifier: str, application: str) -> OtpResult:
        code = generate_code()
        expires_at = self._clock() + timedelta(seconds=self._ttl)
        record = await self._store.replace(identifier, application, code, expires_at)

        message = render_otp_email(code, application, ttl_minutes=max(1, self._ttl // 60))
        try:
            await self._sender.send(identifier, message.subject, message.html)
        except DeliveryError as exc:
            # Roll back only our own record; a newer concurrent code stays intact.
            await self._store.delete_by_id(record.id)
            logger.warning("otp_delivery_failed", application=application, error=str(exc))
            return OtpResult.of(OtpOutcome.DELIVERY_FAILED)

        logger.info("otp_sent", application=application, expires_in=self._ttl)
        return OtpResult.of(OtpOutcome.SENT, expires_in=self._ttl)
