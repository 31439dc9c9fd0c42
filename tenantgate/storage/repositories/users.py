"""Tenant-scoped identity directory, PostgreSQL-backed.

Every user lookup is keyed by ``(email, application)``. The credential engine
only ever sees :meth:`DatabaseIdentityDirectory.find_by_email`, which resolves
the application from the bound tenant context instead of searching all tenants.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog

from tenantgate.models.database import Account, User, _utc_now
from tenantgate.web.tenant_context import require_tenant

logger = structlog.get_logger(__name__)


class IdentityDirectory(Protocol):
    """Lookup capability the credential engine and OTP service depend on."""

    async def find_by_email_and_tenant(self, email: str, application_id: str) -> User | None: ...

    async def find_by_email(self, email: str) -> User | None: ...

    async def get_by_id(self, user_id: str) -> User | None: ...

    async def create(
        self, email: str, application_id: str, password_hash: str, name: str = ""
    ) -> User: ...

    async def get_password_hash(self, user_id: str) -> str | None: ...

    async def mark_email_verified(self, user_id: str) -> None: ...


class DatabaseIdentityDirectory:
    """PostgreSQL-backed user store, scoped per application."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    async def find_by_email_and_tenant(self, email: str, application_id: str) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(User).where(
                col(User.email) == email.lower(),
                col(User.application) == application_id,
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def find_by_email(self, email: str) -> User | None:
        """Scoped lookup against the application bound for this request."""
        return await self.find_by_email_and_tenant(email, require_tenant())

    async def get_by_id(self, user_id: str) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(User).where(col(User.id) == user_id)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def create(
        self, email: str, application_id: str, password_hash: str, name: str = ""
    ) -> User:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            user = User(email=email.lower(), name=name, application=application_id)
            session.add(user)
            await session.flush()  # populate user.id without committing

            # Credential account in the same transaction
            session.add(Account(user_id=user.id, password_hash=password_hash))
            await session.commit()
            await session.refresh(user)

            logger.info("user_created", user_id=user.id, application=application_id)
            return user

    async def get_password_hash(self, user_id: str) -> str | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Account).where(
                col(Account.user_id) == user_id,
                col(Account.provider_id) == "credential",
            )
            result = await session.execute(stmt)
            account = result.scalars().first()
            return account.password_hash if account else None

    async def mark_email_verified(self, user_id: str) -> None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(User).where(col(User.id) == user_id)
            result = await session.execute(stmt)
            user = result.scalars().first()
            if user:
                user.email_verified = True
                user.updated_at = _utc_now()
                session.add(user)
                await session.commit()
                logger.info("user_email_verified", user_id=user_id)
