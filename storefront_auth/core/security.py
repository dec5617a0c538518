"""Password hashing, session tokens and OTP digests."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from storefront_auth.core.config import Settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str | None) -> bool:
    if not hashed_password:
        return False
    return pwd_context.verify(plain_password, hashed_password)


def create_access_token(subject: str, settings: Settings, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a session JWT whose subject is the user's email."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": subject, "exp": expire, "type": "session"}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> Optional[str]:
    """Return the token subject, or None when the token is invalid or expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    if payload.get("type") != "session":
        return None
    return payload.get("sub")


def hash_otp(code: str, email: str, purpose: str, secret_key: str) -> str:
    """Digest a code bound to its (email, purpose) scope so raw codes never hit storage."""
    message = f"{purpose}:{email}:{code}".encode()
    return hmac.new(secret_key.encode(), message, hashlib.sha256).hexdigest()


def otp_matches(code: str, digest: str, email: str, purpose: str, secret_key: str) -> bool:
    return hmac.compare_digest(hash_otp(code, email, purpose, secret_key), digest)
