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

__all__ = [
    "ErrorResponse",
    "ForgotPasswordRequest",
    "Message",
    "OTPRequest",
    "OTPSent",
    "OTPStatus",
    "OTPVerify",
    "ResetPasswordRequest",
    "SessionResponse",
    "SignupWithOTP",
    "UserLogin",
    "UserResponse",
]
