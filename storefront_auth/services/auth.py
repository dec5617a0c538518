"""Identity workflows gated by one-time codes: signup, password reset and sign-in."""

from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront_auth.core.config import Settings
from storefront_auth.core.errors import (
    AccountCreationFailed,
    EmailAlreadyRegistered,
    InvalidCredentials,
    InvalidOrExpiredCode,
    NotAuthenticated,
    PasswordResetFailed,
    TooManyRequests,
)
from storefront_auth.core.logging import get_logger
from storefront_auth.core.security import create_access_token, decode_access_token, get_password_hash, verify_password
from storefront_auth.db.models import OtpPurpose, User
from storefront_auth.schemas.auth import ResetPasswordRequest, SignupWithOTP, UserLogin
from storefront_auth.schemas.otp import OTPRequest, OTPSent, OTPStatus, OTPVerify
from storefront_auth.services import validation
from storefront_auth.services.otp import IssueRateLimiter, RateLimited, VerificationError, VerificationService

logger = get_logger(__name__)

_EXPIRED_MESSAGE = "This code has expired. Please request a new one."


def _code_error(exc: VerificationError) -> HTTPException:
    if exc.reason == "expired":
        return InvalidOrExpiredCode(_EXPIRED_MESSAGE)
    return InvalidOrExpiredCode()


class AuthService:
    """High-level service used by API routes.

    Holds the DB session, the verification service and the send rate limiter.
    Nothing here creates a user or changes a password unless a valid code for
    the matching purpose is consumed in the same transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        verification: VerificationService,
        rate_limiter: IssueRateLimiter,
    ):
        self.session = session
        self.settings = settings
        self.verification = verification
        self.rate_limiter = rate_limiter

    async def _get_user_by_email(self, email: str) -> User | None:
        return await self.session.scalar(select(User).where(User.email == email))

    async def _issue(self, email: str, purpose: OtpPurpose, phone: str | None = None) -> OTPSent:
        issued = await self.verification.issue(email, purpose, phone=phone)
        return OTPSent(
            expires_in=issued.expires_in,
            email_sent=issued.email_sent,
            dev_otp=issued.code if self.settings.expose_dev_otp else None,
        )

    async def _limit(self, email: str, purpose: OtpPurpose) -> None:
        try:
            await self.rate_limiter.hit(email, purpose.value)
        except RateLimited:
            raise TooManyRequests()

    async def send_otp(self, payload: OTPRequest) -> OTPSent:
        """Issue a code for either flow after checking account state."""

        validation.require(email=payload.email, purpose=payload.purpose)
        email = validation.clean_email(payload.email)
        purpose = validation.parse_purpose(payload.purpose)

        if purpose is OtpPurpose.FORGOT_PASSWORD:
            return await self.forgot_password(email)

        if await self._get_user_by_email(email):
            raise EmailAlreadyRegistered()
        await self._limit(email, purpose)
        return await self._issue(email, purpose, phone=payload.phone)

    async def forgot_password(self, email: str | None) -> OTPSent:
        """Start a reset without revealing whether the account exists.

        Unknown addresses get the same success shape with ``email_sent`` false
        and no code stored.
        """

        validation.require(email=email)
        email = validation.clean_email(email)
        await self._limit(email, OtpPurpose.FORGOT_PASSWORD)

        user = await self._get_user_by_email(email)
        if user is None:
            logger.info("password_reset_unknown_email", email=email)
            return OTPSent(expires_in=self.settings.OTP_EXPIRE_SECONDS, email_sent=False)
        return await self._issue(email, OtpPurpose.FORGOT_PASSWORD)

    async def check_otp(self, payload: OTPVerify) -> None:
        """Validate a code without consuming it so the client can move to its next step."""

        validation.require(email=payload.email, code=payload.code, purpose=payload.purpose)
        email = validation.clean_email(payload.email)
        purpose = validation.parse_purpose(payload.purpose)
        if not validation.is_code_shaped(payload.code, self.settings.OTP_LENGTH):
            raise InvalidOrExpiredCode()

        try:
            await self.verification.verify(email, purpose, payload.code, consume=False)
        except VerificationError as exc:
            raise _code_error(exc)

    async def otp_status(self, email: str | None, purpose: str | None) -> OTPStatus:
        validation.require(email=email, purpose=purpose)
        remaining = await self.verification.peek_active_expiry(
            validation.clean_email(email), validation.parse_purpose(purpose)
        )
        return OTPStatus(active=remaining is not None, expires_in=remaining)

    async def signup_with_otp(self, payload: SignupWithOTP) -> tuple[User, str]:
        """Consume the signup code and create the account in one transaction."""

        validation.require(
            email=payload.email,
            password=payload.password,
            firstName=payload.first_name,
            lastName=payload.last_name,
            otpCode=payload.otp_code,
        )
        email = validation.clean_email(payload.email)
        validation.check_password(payload.password, payload.confirm_password)
        if not validation.is_code_shaped(payload.otp_code, self.settings.OTP_LENGTH):
            raise InvalidOrExpiredCode()

        try:
            await self.verification.verify(email, OtpPurpose.SIGNUP, payload.otp_code, commit=False)
        except VerificationError as exc:
            raise _code_error(exc)

        if await self._get_user_by_email(email):
            await self.session.rollback()
            raise EmailAlreadyRegistered()

        user = User(
            email=email,
            hashed_password=get_password_hash(payload.password),
            first_name=payload.first_name.strip(),
            last_name=payload.last_name.strip(),
            is_active=True,
        )
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise EmailAlreadyRegistered()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("account_creation_failed", email=email)
            raise AccountCreationFailed()
        await self.session.refresh(user)

        logger.info("account_created", email=email, user_id=user.id)
        return user, create_access_token(user.email, self.settings)

    async def reset_password(self, payload: ResetPasswordRequest) -> None:
        """Consume the reset code and overwrite the password hash in one transaction."""

        validation.require(email=payload.email, otpCode=payload.otp_code, newPassword=payload.new_password)
        email = validation.clean_email(payload.email)
        validation.check_password(payload.new_password, payload.confirm_password)
        if not validation.is_code_shaped(payload.otp_code, self.settings.OTP_LENGTH):
            raise InvalidOrExpiredCode()

        try:
            await self.verification.verify(email, OtpPurpose.FORGOT_PASSWORD, payload.otp_code, commit=False)
        except VerificationError as exc:
            raise _code_error(exc)

        user = await self._get_user_by_email(email)
        if user is None:
            await self.session.rollback()
            raise InvalidOrExpiredCode()

        user.hashed_password = get_password_hash(payload.new_password)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("password_reset_failed", email=email)
            raise PasswordResetFailed()

        logger.info("password_reset", email=email, user_id=user.id)

    async def login(self, payload: UserLogin) -> tuple[User, str]:
        """Authenticate with email and password and mint a session token."""

        validation.require(email=payload.email, password=payload.password)
        user = await self._get_user_by_email(payload.email.strip().lower())
        if not user or not verify_password(payload.password, user.hashed_password):
            raise InvalidCredentials()
        if not user.is_active:
            raise InvalidCredentials("This account has been disabled.")
        return user, create_access_token(user.email, self.settings)

    async def get_session_user(self, token: str | None) -> User:
        email = decode_access_token(token, self.settings) if token else None
        user = await self._get_user_by_email(email) if email else None
        if user is None or not user.is_active:
            raise NotAuthenticated()
        return user
