from datetime import datetime

from pydantic import BaseModel, EmailStr, Field


class BuddyRequestCreate(BaseModel):
    email: EmailStr


class BuddyRequestOut(BaseModel):
    id: int
    from_user_id: int
    display_name: str
    email: str
    created_at: datetime | None = None


class BuddyOut(BaseModel):
    id: int
    email: str
    display_name: str
    status: str
    avatar_url: str | None = None
    nickname: str | None = None
    group_name: str | None = None


class BuddyUpdate(BaseModel):
    nickname: str | None = Field(default=None, max_length=100)
    group_name: str | None = Field(default=None, min_length=1, max_length=100)
