from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class UserCreate(BaseModel):
    email: EmailStr
    display_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserProfile(BaseModel):
    id: int
    email: str
    display_name: str
    status: str
    avatar_url: str | None = None
    email_verified: bool
    created_at: datetime | None = None
    last_login: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class UserProfileUpdate(BaseModel):
    display_name: str | None = Field(default=None, min_length=1, max_length=100)
    avatar_url: str | None = Field(default=None, max_length=500)


class ChangePassword(BaseModel):
    current_password: str
    new_password: str = Field(min_length=8)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegistrationPending(BaseModel):
    message: str
    user_id: int
    email: str
    verification_required: bool = True


class VerifyEmailRequest(BaseModel):
    token: str = Field(min_length=1)


class StatusUpdate(BaseModel):
    status: Literal["online", "away", "busy"]


class UserSearchResult(BaseModel):
    id: int
    email: str
    display_name: str
    status: str
    avatar_url: str | None = None


class PublicProfile(BaseModel):
    id: int
    display_name: str
    status: str
    avatar_url: str | None = None
    created_at: datetime | None = None
    relationship: Literal["none", "pending", "buddies", "blocked"]


class BlockedUser(BaseModel):
    id: int
    display_name: str
    email: str
    created_at: datetime | None = None
