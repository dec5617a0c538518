"""Input checks that run before any code is issued or verified."""

import re

from email_validator import EmailNotValidError, validate_email

from storefront_auth.core.errors import InvalidEmail, InvalidPurpose, MissingFields, PasswordMismatch, WeakPassword
from storefront_auth.db.models import OtpPurpose

MIN_PASSWORD_LENGTH = 8

PASSWORD_RULES = (
    ("At least 8 characters", lambda pw: len(pw) >= MIN_PASSWORD_LENGTH),
    ("Contains a number", lambda pw: re.search(r"\d", pw) is not None),
    ("Contains uppercase letter", lambda pw: re.search(r"[A-Z]", pw) is not None),
    ("Contains lowercase letter", lambda pw: re.search(r"[a-z]", pw) is not None),
)


def require(**fields: str | None) -> None:
    """Raise MissingFields naming every blank field."""
    missing = [name for name, value in fields.items() if value is None or not str(value).strip()]
    if missing:
        raise MissingFields(f"Please fill in all required fields: {', '.join(missing)}.")


def clean_email(email: str) -> str:
    """Return the trimmed, lower-cased address or raise InvalidEmail."""
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError:
        raise InvalidEmail()
    return email.strip().lower()


def unmet_password_rules(password: str) -> list[str]:
    return [label for label, check in PASSWORD_RULES if not check(password)]


def check_password(password: str, confirm_password: str | None = None) -> None:
    if unmet_password_rules(password):
        raise WeakPassword()
    if confirm_password is not None and confirm_password != password:
        raise PasswordMismatch()


def parse_purpose(purpose: str | None) -> OtpPurpose:
    try:
        return OtpPurpose(purpose)
    except ValueError:
        raise InvalidPurpose()


def is_code_shaped(code: str | None, length: int = 6) -> bool:
    return bool(code) and re.fullmatch(rf"[0-9]{{{length}}}", code) is not None
