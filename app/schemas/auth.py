"""
Authentication Schemas

Request/response models for authentication endpoints.
"""
from datetime import datetime
from typing import Optional
import re

from pydantic import BaseModel, EmailStr, Field, field_validator

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&#])[A-Za-z\d@$!%*?&#]{8,}$")
PHONE_PATTERN = re.compile(r"^\+?[0-9 ()\-.]{7,20}$")


class RegisterRequest(BaseModel):
    """Company registration: creates the tenant and its first admin."""
    company_name: str = Field(..., min_length=1, max_length=200)
    subdomain: str = Field(..., min_length=3, max_length=50, pattern=r"^[a-z0-9-]+$")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    contact_phone: Optional[str] = Field(None, max_length=20)

    @field_validator("password")
    @classmethod
    def password_complexity(cls, value: str) -> str:
        # Lookaheads are not supported by Field(pattern=...)
        if not PASSWORD_PATTERN.match(value):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character."
            )
        return value

    @field_validator("contact_phone")
    @classmethod
    def phone_format(cls, value: Optional[str]) -> Optional[str]:
        if value in (None, ""):
            return None
        if not PHONE_PATTERN.match(value):
            raise ValueError("Invalid phone number format.")
        return value

    model_config = {
        "json_schema_extra": {
            "example": {
                "company_name": "Acme Construction",
                "subdomain": "acme",
                "first_name": "Ada",
                "last_name": "Builder",
                "email": "admin@acme.com",
                "password": "Abc12345!",
            }
        }
    }


class LoginRequest(BaseModel):
    """Login request body. The tenant is resolved from the email."""
    email: EmailStr
    password: str = Field(..., min_length=1)


class AuthResponse(BaseModel):
    """Token envelope returned by register and login."""
    token: str
    expires_at: datetime
    user_id: str
    email: str
    full_name: str
    role: str
    tenant_id: str
    company_name: str


class CurrentUserResponse(BaseModel):
    """Identity read from the validated token claims."""
    user_id: str
    email: Optional[str]
    full_name: Optional[str]
    role: Optional[str]
    tenant_id: str
