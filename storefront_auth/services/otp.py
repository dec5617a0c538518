"""OTP issuance and validation backed by the database, with Redis send limits."""

import math
import re
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from storefront_auth.core.config import Settings
from storefront_auth.core.logging import get_logger
from storefront_auth.core.security import hash_otp, otp_matches
from storefront_auth.db.models import OtpCode, OtpPurpose
from storefront_auth.services.email import OtpSender

logger = get_logger(__name__)

Clock = Callable[[], datetime]

_redis_client: Optional[Redis] = None


def get_redis_client(url: Optional[str]) -> Optional[Redis]:
    """Return a lazily initialized Redis client for `url`, or None when Redis is not configured."""
    global _redis_client
    if not url:
        return None
    if _redis_client is None:
        _redis_client = Redis.from_url(url, decode_responses=True)
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared Redis client; invoked during application shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def utcnow() -> datetime:
    """Naive UTC timestamp matching the storage format of OTP rows."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def generate_otp(length: int = 6) -> str:
    """Create a zero-padded numeric OTP with configurable length."""
    upper_bound = 10 ** length
    return f"{secrets.randbelow(upper_bound):0{length}d}"


class VerificationError(Exception):
    """Base for expected, user-recoverable verification outcomes."""

    reason = "invalid"


class InvalidCode(VerificationError):
    reason = "invalid"


class Expired(VerificationError):
    reason = "expired"


class RateLimited(Exception):
    pass


@dataclass
class IssuedCode:
    code: str
    expires_at: datetime
    expires_in: int
    email_sent: bool


class IssueRateLimiter:
    """Fixed-window counter of codes issued per (email, purpose).

    A missing Redis client disables limiting. Redis outages are logged and
    let the request through rather than blocking signups.
    """

    def __init__(self, redis: Optional[Redis], limit: int, window_seconds: int):
        self.redis = redis
        self.limit = limit
        self.window_seconds = window_seconds

    @staticmethod
    def _key(email: str, purpose: str) -> str:
        return f"otp:send:{purpose}:{email}"

    async def hit(self, email: str, purpose: str) -> None:
        if self.redis is None:
            return
        key = self._key(email, purpose)
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except RedisError as exc:
            logger.warning("otp_rate_limit_unavailable", error=str(exc))
            return
        if count > self.limit:
            logger.info("otp_rate_limited", email=email, purpose=purpose, count=count)
            raise RateLimited(email)


class VerificationService:
    """Issue, check and consume short-lived codes scoped to (email, purpose).

    The service is the only writer of ``otp_codes``. Issuing supersedes any
    active code for the pair in the same transaction that inserts the new one,
    and consumption is a compare-and-swap on ``consumed`` so concurrent
    verifications of one code can succeed at most once.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        sender: OtpSender,
        clock: Clock = utcnow,
    ):
        self.session = session
        self.settings = settings
        self.sender = sender
        self.clock = clock

    async def _latest_active(self, email: str, purpose: OtpPurpose) -> OtpCode | None:
        return await self.session.scalar(
            select(OtpCode)
            .where(
                OtpCode.email == email,
                OtpCode.purpose == purpose,
                OtpCode.consumed.is_(False),
                OtpCode.superseded.is_(False),
            )
            .order_by(OtpCode.created_at.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )

    async def _supersede_active(self, email: str, purpose: OtpPurpose) -> int:
        result = await self.session.execute(
            update(OtpCode)
            .where(
                OtpCode.email == email,
                OtpCode.purpose == purpose,
                OtpCode.consumed.is_(False),
                OtpCode.superseded.is_(False),
            )
            .values(superseded=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def issue(self, email: str, purpose: OtpPurpose | str, phone: str | None = None) -> IssuedCode:
        """Store a fresh code for the pair, replacing any active one, and dispatch it."""

        email = normalize_email(email)
        purpose = OtpPurpose(purpose)

        code = generate_otp(self.settings.OTP_LENGTH)
        ttl = self.settings.OTP_EXPIRE_SECONDS

        for attempt in range(2):
            now = self.clock()
            record = OtpCode(
                email=email,
                phone=phone,
                purpose=purpose,
                code_hash=hash_otp(code, email, purpose.value, self.settings.SECRET_KEY),
                created_at=now,
                expires_at=now + timedelta(seconds=ttl),
                consumed=False,
                superseded=False,
                attempt_count=0,
            )
            try:
                superseded = await self._supersede_active(email, purpose)
                self.session.add(record)
                await self.session.commit()
                break
            except IntegrityError:
                # A concurrent issue for the same pair won the insert.
                await self.session.rollback()
                if attempt:
                    raise

        if superseded:
            logger.info("otp_superseded", email=email, purpose=purpose.value, count=superseded)
        logger.info("otp_issued", email=email, purpose=purpose.value, expires_at=record.expires_at.isoformat())

        email_sent = await self.sender.send(email, code, purpose)
        if not email_sent:
            logger.warning("otp_email_not_sent", email=email, purpose=purpose.value)

        return IssuedCode(code=code, expires_at=record.expires_at, expires_in=ttl, email_sent=email_sent)

    async def verify(
        self,
        email: str,
        purpose: OtpPurpose | str,
        submitted_code: str,
        *,
        consume: bool = True,
        commit: bool = True,
    ) -> OtpCode:
        """Check a submitted code against the pair's active code.

        With ``consume`` the code is marked used and can never match again.
        ``commit=False`` leaves that write in the caller's transaction so it
        lands together with the caller's own changes. Failed attempts are
        always committed.
        """

        email = normalize_email(email)
        purpose = OtpPurpose(purpose)

        if not re.fullmatch(rf"[0-9]{{{self.settings.OTP_LENGTH}}}", submitted_code or ""):
            raise InvalidCode("malformed")

        record = await self._latest_active(email, purpose)
        if record is None:
            logger.info("otp_verify_failed", email=email, purpose=purpose.value, reason="no_active_code")
            raise InvalidCode("no active code")

        if self.clock() > record.expires_at:
            logger.info("otp_verify_failed", email=email, purpose=purpose.value, reason="expired")
            raise Expired("expired")

        if record.attempt_count >= self.settings.OTP_MAX_ATTEMPTS:
            logger.info("otp_verify_failed", email=email, purpose=purpose.value, reason="attempts_exhausted")
            raise InvalidCode("attempts exhausted")

        if not otp_matches(submitted_code, record.code_hash, email, purpose.value, self.settings.SECRET_KEY):
            await self.session.execute(
                update(OtpCode)
                .where(OtpCode.id == record.id)
                .values(attempt_count=OtpCode.attempt_count + 1)
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
            logger.info(
                "otp_verify_failed",
                email=email,
                purpose=purpose.value,
                reason="mismatch",
                attempts=record.attempt_count + 1,
            )
            raise InvalidCode("mismatch")

        if not consume:
            return record

        result = await self.session.execute(
            update(OtpCode)
            .where(OtpCode.id == record.id, OtpCode.consumed.is_(False))
            .values(consumed=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.info("otp_verify_failed", email=email, purpose=purpose.value, reason="already_consumed")
            raise InvalidCode("already consumed")

        set_committed_value(record, "consumed", True)
        if commit:
            await self.session.commit()
        logger.info("otp_consumed", email=email, purpose=purpose.value)
        return record

    async def peek_active_expiry(self, email: str, purpose: OtpPurpose | str) -> int | None:
        """Seconds left on the pair's active code, without touching attempts."""

        record = await self._latest_active(normalize_email(email), OtpPurpose(purpose))
        if record is None:
            return None
        remaining = (record.expires_at - self.clock()).total_seconds()
        if remaining <= 0:
            return None
        return math.ceil(remaining)
