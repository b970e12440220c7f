"""Private message endpoints: send, conversation history, read state, deletion."""

import logging

from fastapi import APIRouter, HTTPException, Query, status

from messenger.dependencies import CurrentUser, DbSession, Hub
from messenger.schemas.message import (
    ConversationOut,
    PrivateMessageIn,
    SentMessageOut,
    UnreadCountOut,
)
from messenger.services import buddy_service, message_service
from messenger.services.chat_errors import (
    MessageValidationError,
    PersistenceError,
    RelationshipError,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


@router.post("/private", response_model=SentMessageOut, status_code=201)
async def send_private_message(body: PrivateMessageIn, current_user: CurrentUser, hub: Hub):
    """Send a message through the same router the WebSocket path uses."""
    try:
        receipt = await hub.router.route(current_user.id, body.to_user_id, body.message)
    except MessageValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)
    except RelationshipError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message)
    except PersistenceError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=exc.message)

    return SentMessageOut(
        message_id=receipt.message_id,
        to_user_id=receipt.to_user_id,
        message=receipt.message,
        timestamp=receipt.timestamp,
        delivered=receipt.delivered,
    )


@router.get("/conversation/{user_id}", response_model=ConversationOut)
async def get_conversation(
    user_id: int,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
):
    """Return one page of history with a buddy and mark their messages read.

    Messages are reported as they were before this fetch marked them read.
    """
    if not await buddy_service.are_buddies(db, current_user.id, user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only view conversations with buddies",
        )

    conversation = await message_service.get_conversation(
        db, current_user.id, user_id, page=page, limit=limit
    )
    marked = await message_service.mark_conversation_read(db, current_user.id, user_id)
    await db.commit()

    if marked:
        await hub.router.notify_read(current_user.id, user_id, marked)
    return conversation


@router.post("/conversation/{user_id}/read")
async def mark_conversation_read(
    user_id: int,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
):
    marked = await message_service.mark_conversation_read(db, current_user.id, user_id)
    await db.commit()
    if marked:
        await hub.router.notify_read(current_user.id, user_id, marked)
    return {"message": "Messages marked as read", "count": len(marked)}


@router.get("/unread/count", response_model=UnreadCountOut)
async def get_unread_count(current_user: CurrentUser, db: DbSession):
    return await message_service.unread_counts(db, current_user.id)


@router.delete("/{message_id}")
async def delete_message(message_id: int, current_user: CurrentUser, db: DbSession):
    """Delete a message the caller sent."""
    if not await message_service.delete_message(db, message_id, current_user.id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Message not found or not owned by you",
        )
    await db.commit()
    return {"message": "Message deleted"}
