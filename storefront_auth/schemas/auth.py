"""Pydantic schemas for signup, password reset and session payloads."""

from datetime import datetime

from pydantic import ConfigDict
from pydantic.alias_generators import to_camel

from storefront_auth.schemas.common import CamelModel


class SignupWithOTP(CamelModel):
    """Signup details held by the client until the code is entered."""

    email: str | None = None
    password: str | None = None
    confirm_password: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    otp_code: str | None = None


class ForgotPasswordRequest(CamelModel):
    email: str | None = None


class ResetPasswordRequest(CamelModel):
    email: str | None = None
    otp_code: str | None = None
    new_password: str | None = None
    confirm_password: str | None = None


class UserLogin(CamelModel):
    email: str | None = None
    password: str | None = None


class UserResponse(CamelModel):
    """Response body representing a user record."""

    id: str
    email: str
    first_name: str
    last_name: str
    created_at: datetime

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SessionResponse(CamelModel):
    """Returned when a session cookie is established."""

    success: bool = True
    user: UserResponse
    access_token: str
