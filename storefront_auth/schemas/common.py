"""Shared lightweight schemas."""

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Accept and emit camelCase keys to match the browser client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Message(CamelModel):
    """Standard response envelope used for plain text messages."""

    success: bool = True
    message: str | None = None


class ErrorResponse(CamelModel):
    success: bool = False
    error: str
    message: str
