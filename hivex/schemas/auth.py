from __future__ import annotations

from pydantic import BaseModel, EmailStr, Field


class MemberSignupIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=3, max_length=20)
    first_name: str | None = None
    last_name: str | None = None


class VenueSignupIn(BaseModel):
    name: str = Field(..., min_length=1)
    address: str | None = None
    email: EmailStr
    password: str = Field(..., min_length=3, max_length=20)


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class PasswordResetRequestIn(BaseModel):
    email: EmailStr


class PasswordResetConfirmIn(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=3, max_length=20)


class MessageOut(BaseModel):
    message: str
