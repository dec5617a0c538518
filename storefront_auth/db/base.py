"""Declarative base that registers the user and OTP tables on one metadata."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass
