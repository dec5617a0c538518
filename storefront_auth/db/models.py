"""ORM models for storefront customers and their one-time codes."""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from storefront_auth.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class OtpPurpose(str, enum.Enum):
    SIGNUP = "signup"
    FORGOT_PASSWORD = "forgot_password"


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )


class OtpCode(Base):
    """A single issued code. Rows are never deleted; they go inactive by being
    consumed, superseded by a newer code, or by passing ``expires_at``.

    Timestamps are naive UTC.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        # At most one active code per (email, purpose).
        Index(
            "uq_otp_codes_active",
            "email",
            "purpose",
            unique=True,
            postgresql_where=text("NOT consumed AND NOT superseded"),
            sqlite_where=text("consumed = 0 AND superseded = 0"),
        ),
        Index("ix_otp_codes_lookup", "email", "purpose", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    purpose: Mapped[OtpPurpose] = mapped_column(
        Enum(OtpPurpose, name="otp_purpose", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    consumed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    superseded: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
