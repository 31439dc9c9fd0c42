"""Email/password credential engine.

User lookups go through the injected :class:`IdentityDirectory`. Its
``find_by_email`` resolves the application from the tenant context, so the
engine never searches across applications.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import bcrypt
import structlog
from sqlalchemy.exc import IntegrityError

from tenantgate.exceptions import InvalidCredentialsError, UserAlreadyExistsError

if TYPE_CHECKING:
    from tenantgate.models.database import Session, User
    from tenantgate.storage.repositories.users import IdentityDirectory
    from tenantgate.web.auth.session import SessionAuth

logger = structlog.get_logger(__name__)

DEFAULT_HASH_ROUNDS = 12
# bcrypt only looks at the first 72 bytes of a password
_BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode()[:_BCRYPT_MAX_BYTES]


def hash_password(password: str, rounds: int = DEFAULT_HASH_ROUNDS) -> str:
    """Hash ``password`` with bcrypt at the given cost factor."""
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(_password_bytes(password), salt).decode()


def verify_password(password: str, hashed_password: str) -> bool:
    """Check ``password`` against a stored bcrypt hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(_password_bytes(password), hashed_password.encode())
    except ValueError:
        return False


class CredentialEngine:
    """Signs users up and in, minting sessions for the bound application."""

    def __init__(
        self,
        directory: IdentityDirectory,
        sessions: SessionAuth,
        hash_rounds: int = DEFAULT_HASH_ROUNDS,
    ) -> None:
        self._directory = directory
        self._sessions = sessions
        self._hash_rounds = hash_rounds

    async def sign_up(
        self,
        email: str,
        password: str,
        application: str,
        name: str = "",
        ip_address: str = "",
        user_agent: str = "",
    ) -> tuple[User, Session]:
        if await self._directory.find_by_email(email) is not None:
            msg = "User already exists"
            raise UserAlreadyExistsError(msg)

        try:
            user = await self._directory.create(
                email=email,
                application_id=application,
                password_hash=hash_password(password, rounds=self._hash_rounds),
                name=name,
            )
        except IntegrityError as exc:
            msg = "User already exists"
            raise UserAlreadyExistsError(msg) from exc

        session = await self._sessions.create_session(
            user.id, application, ip_address=ip_address, user_agent=user_agent
        )
        logger.info("user_signed_up", user_id=user.id, application=application)
        return user, session

    async def sign_in(
        self,
        email: str,
        password: str,
        ip_address: str = "",
        user_agent: str = "",
    ) -> tuple[User, Session]:
        user = await self._directory.find_by_email(email)
        if user is None:
            msg = "Invalid email or password"
            raise InvalidCredentialsError(msg)

        encoded = await self._directory.get_password_hash(user.id)
        if encoded is None or not verify_password(password, encoded):
            msg = "Invalid email or password"
            raise InvalidCredentialsError(msg)

        session = await self._sessions.create_session(
            user.id, user.application, ip_address=ip_address, user_agent=user_agent
        )
        logger.info("user_signed_in", user_id=user.id, application=user.application)
        return user, session
