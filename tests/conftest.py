"""Shared pytest fixtures for the identity service tests."""

from __future__ import annotations

import os
import tempfile
from collections.abc import AsyncIterator, Callable
from datetime import datetime, timedelta
from typing import Any

_DB_DIR = tempfile.mkdtemp(prefix="storefront-auth-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/auth.sqlite"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["SESSION_COOKIE_SECURE"] = "false"
os.environ["LOG_JSON"] = "false"
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from storefront_auth.api import deps  # noqa: E402
from storefront_auth.core.config import Settings, get_settings  # noqa: E402
from storefront_auth.core.security import get_password_hash  # noqa: E402
from storefront_auth.db.base import Base  # noqa: E402
from storefront_auth.db.models import OtpPurpose, User  # noqa: E402
from storefront_auth.db.session import async_session_factory, engine  # noqa: E402
from storefront_auth.main import create_application  # noqa: E402
from storefront_auth.services.otp import VerificationService  # noqa: E402

USER_PASSWORD = "Existing1Pass"


class FrozenClock:
    """Naive-UTC clock that only moves when a test advances it."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingSender:
    """Captures dispatched codes instead of emailing them."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, OtpPurpose]] = []
        self.fail = False

    async def send(self, email: str, code: str, purpose: OtpPurpose) -> bool:
        if self.fail:
            return False
        self.sent.append((email, code, purpose))
        return True

    def last_code(self, email: str | None = None) -> str:
        for sent_email, code, _ in reversed(self.sent):
            if email is None or sent_email == email:
                return code
        raise AssertionError(f"no code sent to {email}")


class FakeRedis:
    """Just enough of the Redis counter API for the send limiter."""

    def __init__(self) -> None:
        self.values: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.ttls[key] = seconds
        return True


@pytest_asyncio.fixture(autouse=True)
async def _database() -> AsyncIterator[None]:
    """Create a clean schema for every test and release pooled connections after."""

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest.fixture()
def settings() -> Settings:
    return get_settings()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture()
def sender() -> RecordingSender:
    return RecordingSender()


@pytest_asyncio.fixture()
async def session() -> AsyncIterator[AsyncSession]:
    async with async_session_factory() as session:
        yield session


@pytest.fixture()
def make_verification(
    settings: Settings, sender: RecordingSender, clock: FrozenClock
) -> Callable[[AsyncSession], VerificationService]:
    def _make(session: AsyncSession) -> VerificationService:
        return VerificationService(session=session, settings=settings, sender=sender, clock=clock)

    return _make


@pytest.fixture()
def app(sender: RecordingSender, clock: FrozenClock) -> FastAPI:
    """Return an application wired to the recording sender and frozen clock."""

    application = create_application()
    application.dependency_overrides[deps.get_otp_sender] = lambda: sender
    application.dependency_overrides[deps.get_clock] = lambda: clock
    return application


@pytest.fixture()
def override_app_settings(app: FastAPI, settings: Settings) -> Callable[..., Settings]:
    def _apply(**updates: Any) -> Settings:
        updated = settings.model_copy(update=updates)
        app.dependency_overrides[deps.get_app_settings] = lambda: updated
        return updated

    return _apply


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """Provide an HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest_asyncio.fixture()
async def existing_user() -> dict[str, Any]:
    """Persist a registered customer and return their credentials."""

    async with async_session_factory() as session:
        user = User(
            email="shopper@example.com",
            hashed_password=get_password_hash(USER_PASSWORD),
            first_name="Sam",
            last_name="Shopper",
        )
        session.add(user)
        await session.commit()
        return {"id": user.id, "email": user.email, "password": USER_PASSWORD, "hashed_password": user.hashed_password}
