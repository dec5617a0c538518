"""Typed failures surfaced to API clients.

Every error carries a stable ``code`` the browser can switch on and a
user-facing message. None of them include storage or transport details.
"""

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from storefront_auth.core.logging import get_logger

logger = get_logger(__name__)


class AuthError(HTTPException):
    """Base for identity workflow errors rendered as structured JSON."""

    code = "AuthError"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request could not be completed."

    def __init__(self, message: str | None = None):
        super().__init__(status_code=self.status_code, detail=message or self.message)

    @property
    def body(self) -> dict:
        return {"success": False, "error": self.code, "message": self.detail}


class MissingFields(AuthError):
    code = "MissingFields"
    message = "Please fill in all required fields."


class InvalidEmail(AuthError):
    code = "InvalidEmail"
    message = "Please enter a valid email address."


class WeakPassword(AuthError):
    code = "WeakPassword"
    message = "Password must be at least 8 characters and contain an uppercase letter, a lowercase letter and a number."


class PasswordMismatch(AuthError):
    code = "PasswordMismatch"
    message = "Passwords don't match."


class InvalidPurpose(AuthError):
    code = "InvalidPurpose"
    message = "Unsupported verification purpose."


class InvalidRequest(AuthError):
    code = "InvalidRequest"
    message = "The request could not be read. Please check the submitted fields."


class EmailAlreadyRegistered(AuthError):
    code = "EmailAlreadyRegistered"
    status_code = status.HTTP_409_CONFLICT
    message = "An account with this email already exists. Please sign in instead."


class InvalidOrExpiredCode(AuthError):
    code = "InvalidOrExpiredCode"
    message = "The code is invalid or has expired. Please request a new one."


class TooManyRequests(AuthError):
    code = "TooManyRequests"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too many verification codes requested. Please wait before trying again."


class InvalidCredentials(AuthError):
    code = "InvalidCredentials"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Incorrect email or password."


class NotAuthenticated(AuthError):
    code = "NotAuthenticated"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Please sign in to continue."


class AccountCreationFailed(AuthError):
    code = "AccountCreationFailed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "We couldn't create your account. Please try again."


class PasswordResetFailed(AuthError):
    code = "PasswordResetFailed"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "We couldn't reset your password. Please try again."


class ServiceUnavailable(AuthError):
    code = "ServiceUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    message = "Something went wrong. Please try again."


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.body)


async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("storage_error", path=request.url.path)
    error = ServiceUnavailable()
    return JSONResponse(status_code=error.status_code, content=error.body)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render unparseable or wrongly typed bodies with the same envelope as other input errors."""
    fields = [".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()]
    logger.info("request_rejected", path=request.url.path, fields=[field for field in fields if field])
    error = InvalidRequest()
    return JSONResponse(status_code=error.status_code, content=error.body)
