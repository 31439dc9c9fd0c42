"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Identity models (owned by the credential engine)
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("email", "application", name="uq_users_email_application"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str = ""
    email: str = Field(index=True)  # always lower-cased
    application: str = Field(index=True)
    email_verified: bool = Field(default=False)
    image: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    provider_id: str = Field(default="credential")
    password_hash: str
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Session(SQLModel, table=True):
    __tablename__ = "sessions"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    token: str = Field(unique=True, index=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    application: str
    expires_at: datetime
    ip_address: str = ""
    user_agent: str = ""
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# One-time passcode challenges
# ---------------------------------------------------------------------------


class Verification(SQLModel, table=True):
    __tablename__ = "verifications"
    __table_args__ = (
        UniqueConstraint("identifier", "application", name="uq_verifications_identifier"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    identifier: str = Field(index=True)  # lower-cased email
    application: str
    value: str  # 6 digits, zero-padded
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)
