"""Verification (OTP challenge) repository, PostgreSQL-backed.

At most one record exists per ``(identifier, application)``. Reissuing a code
goes through :meth:`DatabaseVerificationStore.replace`, which deletes the old
row and inserts the new one inside a single transaction.
"""

from __future__ import annotations

import asyncio
import weakref
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy.exc import IntegrityError

from tenantgate.exceptions import StorageError
from tenantgate.models.database import Verification, _utc_now
from tenantgate.utils.retry import retry

if TYPE_CHECKING:
    from datetime import datetime

logger = structlog.get_logger(__name__)


def _log_orphaned_failure(task: asyncio.Future[Verification]) -> None:
    """Retrieve the outcome of a replace whose caller was cancelled."""
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("verification_replace_orphaned", error=str(exc))


class DatabaseVerificationStore:
    """PostgreSQL-backed store for pending one-time codes."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine
        # Per-identifier locks; entries disappear once no coroutine holds them.
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, identifier: str, application: str) -> asyncio.Lock:
        key = (application, identifier)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get(self, identifier: str, application: str) -> Verification | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Verification).where(
                col(Verification.identifier) == identifier.lower(),
                col(Verification.application) == application,
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def replace(
        self,
        identifier: str,
        application: str,
        value: str,
        expires_at: datetime,
    ) -> Verification:
        """Atomically swap whatever record exists for ``identifier`` with a new one.

        The swap is shielded: if the calling request is cancelled, the
        transaction still runs to completion, and a failure nobody awaits any
        more is logged by :func:`_log_orphaned_failure`.
        """
        task = asyncio.ensure_future(
            self._replace_serialized(identifier.lower(), application, value, expires_at)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_log_orphaned_failure)
            raise

    async def _replace_serialized(
        self,
        identifier: str,
        application: str,
        value: str,
        expires_at: datetime,
    ) -> Verification:
        lock = self._lock_for(identifier, application)
        async with lock:
            try:
                return await self._replace_once(identifier, application, value, expires_at)
            except IntegrityError as exc:
                logger.error(
                    "verification_replace_failed", identifier=identifier, application=application
                )
                msg = "Could not store verification code"
                raise StorageError(msg) from exc

    @retry(max_attempts=3, delay_ms=50, retry_on=(IntegrityError,))
    async def _replace_once(
        self,
        identifier: str,
        application: str,
        value: str,
        expires_at: datetime,
    ) -> Verification:
        from sqlalchemy import delete
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            await session.execute(
                delete(Verification).where(
                    col(Verification.identifier) == identifier,
                    col(Verification.application) == application,
                )
            )
            now = _utc_now()
            record = Verification(
                identifier=identifier,
                application=application,
                value=value,
                expires_at=expires_at,
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            await session.commit()
            await session.refresh(record)
            logger.debug("verification_replaced", identifier=identifier, application=application)
            return record

    async def delete(self, identifier: str, application: str) -> int:
        """Delete any record for ``identifier``. Returns the number of rows removed."""
        from sqlalchemy import delete
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                delete(Verification).where(
                    col(Verification.identifier) == identifier.lower(),
                    col(Verification.application) == application,
                )
            )
            await session.commit()
            return result.rowcount or 0

    async def delete_by_id(self, verification_id: str) -> bool:
        """Delete one specific record. False if it was already gone."""
        from sqlalchemy import delete
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                delete(Verification).where(col(Verification.id) == verification_id)
            )
            await session.commit()
            return bool(result.rowcount)
