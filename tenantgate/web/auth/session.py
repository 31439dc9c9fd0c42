"""Cookie-based session authentication."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import timedelta
from typing import Any

import structlog

from tenantgate.models.database import Session, _utc_now

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "tenantgate.session_token"


class SessionAuth:
    """Signed session tokens persisted per user and application."""

    def __init__(self, engine: Any, secret_key: str, max_age: int = 60 * 60 * 24 * 7) -> None:
        self._engine = engine
        self._secret = secret_key.encode()
        self._max_age = max_age

    @property
    def max_age(self) -> int:
        return self._max_age

    async def create_session(
        self,
        user_id: str,
        application: str,
        ip_address: str = "",
        user_agent: str = "",
    ) -> Session:
        """Create a new session and return it; ``session.token`` goes in the cookie."""
        from sqlmodel.ext.asyncio.session import AsyncSession

        token = secrets.token_urlsafe(32)
        signed_token = f"{token}.{self._sign(token)}"
        record = Session(
            token=signed_token,
            user_id=user_id,
            application=application,
            expires_at=_utc_now() + timedelta(seconds=self._max_age),
            ip_address=ip_address,
            user_agent=user_agent,
        )
        async with AsyncSession(self._engine) as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        logger.info("session_created", user_id=user_id, application=application)
        return record

    async def validate_session(self, token: str, application: str) -> Session | None:
        """Return the session if the token is genuine, unexpired and minted for ``application``."""
        if not token or "." not in token:
            return None

        raw_token, signature = token.rsplit(".", 1)
        if not hmac.compare_digest(signature, self._sign(raw_token)):
            return None

        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Session).where(col(Session.token) == token)
            result = await session.execute(stmt)
            record = result.scalars().first()

        if record is None or record.application != application:
            return None

        if _utc_now() > record.expires_at:
            await self.destroy_session(token)
            return None

        return record

    async def destroy_session(self, token: str) -> None:
        """Remove a session."""
        from sqlalchemy import delete
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            await session.execute(delete(Session).where(col(Session.token) == token))
            await session.commit()
        logger.info("session_destroyed")

    def _sign(self, data: str) -> str:
        """Create HMAC signature for a token."""
        return hmac.new(self._secret, data.encode(), hashlib.sha256).hexdigest()[:32]
