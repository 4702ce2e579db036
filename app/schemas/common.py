"""
Shared response schemas.

Every error leaves the API in the same envelope.
"""
from typing import Optional

from pydantic import BaseModel


class ErrorDetail(BaseModel):
    field: str
    message: str


class ErrorResponse(BaseModel):
    status_code: int
    message: str
    errors: Optional[list[ErrorDetail]] = None


class HealthCheck(BaseModel):
    status: str
    timestamp: str
    checks: Optional[dict[str, str]] = None
