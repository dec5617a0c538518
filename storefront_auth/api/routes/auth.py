"""HTTP route handlers for OTP-gated signup, password reset and sessions."""

from fastapi import APIRouter, Depends, Response, status

from storefront_auth.api import deps
from storefront_auth.core.config import Settings
from storefront_auth.db.models import User
from storefront_auth.schemas.auth import (
    ForgotPasswordRequest,
    ResetPasswordRequest,
    SessionResponse,
    SignupWithOTP,
    UserLogin,
    UserResponse,
)
from storefront_auth.schemas.common import ErrorResponse, Message
from storefront_auth.schemas.otp import OTPRequest, OTPSent, OTPStatus, OTPVerify
from storefront_auth.services.auth import AuthService

router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_429_TOO_MANY_REQUESTS: {"model": ErrorResponse},
    },
)


def _set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        secure=settings.SESSION_COOKIE_SECURE,
        samesite="lax",
    )


def _session_response(user: User, token: str) -> SessionResponse:
    return SessionResponse(user=UserResponse.model_validate(user), access_token=token)


@router.post("/send-otp", response_model=OTPSent, response_model_exclude_none=True)
async def send_otp(
    payload: OTPRequest,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> OTPSent:
    """Issue a verification code for signup or password reset."""

    return await auth_service.send_otp(payload)


@router.post("/verify-otp", response_model=Message, response_model_exclude_none=True)
async def verify_otp(
    payload: OTPVerify,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> Message:
    """Check a submitted code. The code stays usable for the final step."""

    await auth_service.check_otp(payload)
    return Message()


@router.get("/otp-status", response_model=OTPStatus, response_model_exclude_none=True)
async def otp_status(
    email: str | None = None,
    purpose: str | None = None,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> OTPStatus:
    """Seconds left on the active code, used to resume a countdown after reload."""

    return await auth_service.otp_status(email, purpose)


@router.post("/signup-with-otp", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
async def signup_with_otp(
    payload: SignupWithOTP,
    response: Response,
    settings: Settings = Depends(deps.get_app_settings),
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> SessionResponse:
    """Verify the signup code and create the account, then sign the user in."""

    user, token = await auth_service.signup_with_otp(payload)
    _set_session_cookie(response, token, settings)
    return _session_response(user, token)


@router.post("/forgot-password", response_model=OTPSent, response_model_exclude_none=True)
async def forgot_password(
    payload: ForgotPasswordRequest,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> OTPSent:
    """Send a reset code. The response never reveals whether the account exists."""

    return await auth_service.forgot_password(payload.email)


@router.post("/reset-password", response_model=Message, response_model_exclude_none=True)
async def reset_password(
    payload: ResetPasswordRequest,
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> Message:
    """Verify the reset code and replace the password. No session is created."""

    await auth_service.reset_password(payload)
    return Message(message="Your password has been updated. Please sign in.")


@router.post("/login", response_model=SessionResponse)
async def login(
    payload: UserLogin,
    response: Response,
    settings: Settings = Depends(deps.get_app_settings),
    auth_service: AuthService = Depends(deps.get_auth_service),
) -> SessionResponse:
    user, token = await auth_service.login(payload)
    _set_session_cookie(response, token, settings)
    return _session_response(user, token)


@router.post("/logout", response_model=Message, response_model_exclude_none=True)
async def logout(response: Response, settings: Settings = Depends(deps.get_app_settings)) -> Message:
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return Message()


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(deps.get_current_user)) -> UserResponse:
    return UserResponse.model_validate(user)
