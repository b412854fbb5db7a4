"""Common response schemas."""

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Body returned by the HTTP exception handler."""

    detail: str
