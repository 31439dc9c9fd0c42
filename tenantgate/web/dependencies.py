"""FastAPI dependency injection and shared state."""

from __future__ import annotations

from functools import lru_cache

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from tenantgate.config.settings import Settings, get_settings
from tenantgate.storage.database import get_engine
from tenantgate.storage.repositories.users import DatabaseIdentityDirectory
from tenantgate.storage.repositories.verifications import DatabaseVerificationStore
from tenantgate.web.auth.credentials import CredentialEngine
from tenantgate.web.auth.mailer import ConsoleEmailSender, EmailSender, ResendEmailSender
from tenantgate.web.auth.otp_service import OtpService
from tenantgate.web.auth.session import SessionAuth
from tenantgate.web.gateway import AuthGateway

logger = structlog.get_logger(__name__)


def _create_email_sender(settings: Settings) -> EmailSender:
    """Create the appropriate email sender based on settings."""
    if settings.resend_api_key:
        return ResendEmailSender(
            api_key=settings.resend_api_key,
            from_email=settings.resend_from_email,
            api_url=settings.resend_api_url,
        )
    logger.warning("email_sender_console_fallback")
    return ConsoleEmailSender()


def build_gateway(
    engine: AsyncEngine,
    settings: Settings,
    sender: EmailSender | None = None,
) -> AuthGateway:
    """Wire the directory, stores, OTP service and credential engine together."""
    directory = DatabaseIdentityDirectory(engine)
    store = DatabaseVerificationStore(engine)
    otp_service = OtpService(
        directory=directory,
        store=store,
        sender=sender or _create_email_sender(settings),
        ttl_seconds=settings.otp_ttl_seconds,
    )
    sessions = SessionAuth(engine, settings.secret_key, max_age=settings.session_max_age)
    credentials = CredentialEngine(directory, sessions, hash_rounds=settings.password_hash_rounds)
    return AuthGateway(otp_service, directory, credentials, sessions)


def get_db_engine() -> AsyncEngine:
    return get_engine()


@lru_cache
def get_gateway() -> AuthGateway:
    """Return the process-wide gateway."""
    return build_gateway(get_engine(), get_settings())
