"""Dependency providers used by FastAPI endpoints.

These helpers expose settings, database sessions, the Redis-backed rate
limiter, the OTP sender and composed services through FastAPI's dependency
injection system so route handlers remain thin. Tests override the leaf
providers to swap in recording senders and controllable clocks.
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_auth.core.config import Settings, get_settings
from storefront_auth.db.models import User
from storefront_auth.db.session import get_session
from storefront_auth.services.auth import AuthService
from storefront_auth.services.email import OtpSender, build_sender
from storefront_auth.services.otp import Clock, IssueRateLimiter, VerificationService, get_redis_client, utcnow


def get_app_settings() -> Settings:
    return get_settings()


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async SQLAlchemy session tied to the shared engine."""

    async for session in get_session():
        yield session


def get_redis(settings: Settings = Depends(get_app_settings)) -> Optional[Redis]:
    """Return the shared Redis client, or None when rate limiting is not configured."""
    return get_redis_client(settings.REDIS_URL)


def get_otp_sender(settings: Settings = Depends(get_app_settings)) -> OtpSender:
    return build_sender(settings)


def get_clock() -> Clock:
    return utcnow


def get_rate_limiter(
    settings: Settings = Depends(get_app_settings),
    redis: Optional[Redis] = Depends(get_redis),
) -> IssueRateLimiter:
    return IssueRateLimiter(redis, settings.OTP_SEND_LIMIT, settings.OTP_SEND_WINDOW_SECONDS)


def get_verification_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    sender: OtpSender = Depends(get_otp_sender),
    clock: Clock = Depends(get_clock),
) -> VerificationService:
    return VerificationService(session=session, settings=settings, sender=sender, clock=clock)


def get_auth_service(
    session: AsyncSession = Depends(get_db_session),
    settings: Settings = Depends(get_app_settings),
    verification: VerificationService = Depends(get_verification_service),
    rate_limiter: IssueRateLimiter = Depends(get_rate_limiter),
) -> AuthService:
    """Assemble AuthService around the request's session.

    FastAPI caches `get_db_session` per request, so the verification service
    and the auth service share one session and one transaction.
    """

    return AuthService(session=session, settings=settings, verification=verification, rate_limiter=rate_limiter)


async def get_current_user(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    return await auth_service.get_session_user(token)
