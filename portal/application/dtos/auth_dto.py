# portal/application/dtos/auth_dto.py

"""
DTOs for login and token introspection.
"""

from datetime import datetime

from pydantic import EmailStr, Field

from portal.application.dtos.base_dto import CustomBaseModel


class LoginRequest(CustomBaseModel):
    email: EmailStr = Field(..., description="User email")
    password: str = Field(..., min_length=8, max_length=128, description="User password")


class TokenResponse(CustomBaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class ClaimsOutput(CustomBaseModel):
    user_id: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime
