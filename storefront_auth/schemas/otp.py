"""Pydantic schemas for OTP issue, check and status flows.

Fields are optional at the schema level so blank or missing input surfaces as
`MissingFields` rather than a generic validation error.
"""

from storefront_auth.schemas.common import CamelModel


class OTPRequest(CamelModel):
    """Payload used to request a new OTP for an email and purpose."""

    email: str | None = None
    purpose: str | None = None
    phone: str | None = None


class OTPVerify(CamelModel):
    """Payload used when submitting a received OTP code for validation."""

    email: str | None = None
    code: str | None = None
    purpose: str | None = None


class OTPSent(CamelModel):
    success: bool = True
    expires_in: int
    email_sent: bool | None = None
    dev_otp: str | None = None


class OTPStatus(CamelModel):
    success: bool = True
    active: bool
    expires_in: int | None = None
