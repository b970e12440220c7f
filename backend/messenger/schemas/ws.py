"""Inbound WebSocket frames, discriminated on ``type``."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, TypeAdapter

from messenger.config import settings


class _Frame(BaseModel):
    model_config = ConfigDict(extra="ignore")


class AuthenticateFrame(_Frame):
    type: Literal["authenticate"]
    token: StrictStr


class PrivateMessageFrame(_Frame):
    type: Literal["private_message"]
    to_user_id: StrictInt = Field(alias="toUserId")
    message: Annotated[StrictStr, Field(max_length=settings.message_max_length)]


class TypingFrame(_Frame):
    type: Literal["typing_start", "typing_stop"]
    to_user_id: StrictInt = Field(alias="toUserId")


class PingFrame(_Frame):
    type: Literal["ping"]


class StatusUpdateFrame(_Frame):
    type: Literal["status_update"]
    status: Literal["online", "away", "busy"]


class MarkReadFrame(_Frame):
    type: Literal["mark_read"]
    message_id: StrictInt = Field(alias="messageId")


InboundFrame = Annotated[
    Union[
        AuthenticateFrame,
        PrivateMessageFrame,
        TypingFrame,
        PingFrame,
        StatusUpdateFrame,
        MarkReadFrame,
    ],
    Field(discriminator="type"),
]

inbound_frame_adapter: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)
