from pydantic import BaseModel, ConfigDict, Field

from messenger.config import settings


class PrivateMessageIn(BaseModel):
    to_user_id: int = Field(alias="toUserId")
    message: str = Field(min_length=1, max_length=settings.message_max_length)

    model_config = ConfigDict(populate_by_name=True)


class MessageOut(BaseModel):
    id: int
    from_user_id: int
    to_user_id: int
    message: str
    read: bool
    created_at: str | None = None
    from_display_name: str | None = None
    to_display_name: str | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ConversationOut(BaseModel):
    messages: list[MessageOut]
    pagination: Pagination


class UnreadCountOut(BaseModel):
    unread_counts: dict[str, int]
    total_unread: int


class SentMessageOut(BaseModel):
    message_id: int
    to_user_id: int
    message: str
    timestamp: str
    delivered: bool
