"""Shared test fixtures."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from tenantgate.config.settings import Settings, get_settings
from tenantgate.exceptions import DeliveryError
from tenantgate.models.database import _utc_now
from tenantgate.storage.database import init_db
from tenantgate.storage.repositories.users import DatabaseIdentityDirectory
from tenantgate.storage.repositories.verifications import DatabaseVerificationStore
from tenantgate.web.app import create_app
from tenantgate.web.auth.credentials import hash_password
from tenantgate.web.auth.otp_service import OtpService
from tenantgate.web.dependencies import build_gateway, get_db_engine, get_gateway

TEST_PASSWORD = "correct-horse-battery"
TEST_HASH_ROUNDS = 4
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD, rounds=TEST_HASH_ROUNDS)

_CODE_RE = re.compile(r">\s*(\d{6})\s*<")


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str

    @property
    def code(self) -> str:
        match = _CODE_RE.search(self.html)
        assert match, "no code in email body"
        return match.group(1)


class RecordingEmailSender:
    """Email sender double that records messages and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False

    async def send(self, to: str, subject: str, html: str) -> None:
        if self.fail:
            msg = "smtp down"
            raise DeliveryError(msg)
        self.sent.append(SentEmail(to=to, subject=subject, html=html))

    @property
    def last_code(self) -> str:
        return self.sent[-1].code


class FakeClock:
    """Controllable replacement for the service clock."""

    def __init__(self) -> None:
        self.now: datetime = _utc_now()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    """Deterministic settings for every test."""
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DEBUG", "true")
    monkeypatch.setenv("PASSWORD_HASH_ROUNDS", str(TEST_HASH_ROUNDS))
    monkeypatch.delenv("RESEND_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
async def async_engine(tmp_path):
    """File-backed SQLite engine with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'tenantgate.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def sender() -> RecordingEmailSender:
    return RecordingEmailSender()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def directory(async_engine) -> DatabaseIdentityDirectory:
    return DatabaseIdentityDirectory(async_engine)


@pytest.fixture()
def store(async_engine) -> DatabaseVerificationStore:
    return DatabaseVerificationStore(async_engine)


@pytest.fixture()
def otp_service(directory, store, sender, clock) -> OtpService:
    return OtpService(directory=directory, store=store, sender=sender, clock=clock)


@pytest.fixture()
def make_user(directory):
    """Factory creating users directly in the directory."""

    async def _make(
        email: str = "alice@example.com",
        application: str = "app-a",
        verified: bool = False,
    ):
        user = await directory.create(
            email=email,
            application_id=application,
            password_hash=TEST_PASSWORD_HASH,
            name=email.split("@")[0],
        )
        if verified:
            await directory.mark_email_verified(user.id)
            user = await directory.get_by_id(user.id)
        return user

    return _make


@pytest.fixture()
def app(async_engine, sender):
    """App wired to the test database and recording sender."""
    app = create_app()
    gateway = build_gateway(async_engine, Settings(), sender=sender)
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_db_engine] = lambda: async_engine
    return app


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
