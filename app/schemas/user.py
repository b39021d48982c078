"""User and auth Pydantic schemas for request/response validation."""

from datetime import datetime

from pydantic import BaseModel, EmailStr


class UserBase(BaseModel):
    """Base user schema."""

    username: str
    email: EmailStr


class UserCreate(UserBase):
    """Schema for creating a new user."""

    password: str


class UserResponse(UserBase):
    """Schema for user response."""

    id: int
    created_at: datetime
    is_active: bool

    model_config = {"from_attributes": True}


class Token(BaseModel):
    """Schema for bearer token response."""

    access_token: str
    token_type: str
    expires_at: datetime


class TokenData(BaseModel):
    """Schema for token payload data."""

    username: str | None = None
    session_id: str | None = None


class LoginRequest(BaseModel):
    """Schema for login request."""

    username: str
    password: str
