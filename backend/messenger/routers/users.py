"""User search, public profiles, blocking and presence status."""

import logging

from fastapi import APIRouter, HTTPException, Query, Request, status

from messenger.dependencies import CurrentUser, DbSession, Hub
from messenger.models.user import User
from messenger.routers.auth import request_ip
from messenger.routers.buddies import raise_service_error
from messenger.schemas.user import BlockedUser, PublicProfile, StatusUpdate, UserSearchResult
from messenger.services import buddy_service
from messenger.services.audit_service import get_user_actions, log_user_action
from messenger.services.buddy_service import BuddyServiceError
from messenger.services.chat_errors import PersistenceError
from messenger.services.user_service import search_users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("/search", response_model=list[UserSearchResult])
async def search(
    current_user: CurrentUser,
    db: DbSession,
    query: str = Query(min_length=2, max_length=100),
):
    """Search verified users by email or display name."""
    return await search_users(db, query, current_user.id)


@router.put("/me/status")
async def update_status(body: StatusUpdate, current_user: CurrentUser, hub: Hub):
    """Set an explicit presence status and tell connected buddies."""
    try:
        await hub.presence.broadcast_status(current_user.id, body.status)
    except PersistenceError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update status",
        )
    return {"message": "Status updated", "status": body.status}


@router.get("/me/activity")
async def get_activity(
    current_user: CurrentUser,
    db: DbSession,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Return the caller's recent audited actions."""
    return await get_user_actions(db, current_user.id, limit)


@router.get("/blocks", response_model=list[BlockedUser])
async def get_blocked_users(current_user: CurrentUser, db: DbSession):
    return await buddy_service.list_blocked(db, current_user.id)


@router.get("/{user_id}/profile", response_model=PublicProfile)
async def get_profile(user_id: int, current_user: CurrentUser, db: DbSession):
    """Return a public profile plus how the caller relates to that user."""
    user = await db.get(User, user_id)
    if user is None or await buddy_service.is_blocked(db, user_id, current_user.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    return PublicProfile(
        id=user.id,
        display_name=user.display_name,
        status=user.status,
        avatar_url=user.avatar_url,
        created_at=user.created_at,
        relationship=await buddy_service.relationship(db, current_user.id, user_id),
    )


@router.post("/{user_id}/block")
async def block_user(
    user_id: int,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
):
    """Block a user; any buddy edge and pending requests between the pair are dropped."""
    try:
        await buddy_service.block_user(db, current_user.id, user_id)
    except BuddyServiceError as exc:
        raise_service_error(exc)
    await log_user_action(
        db, current_user.id, "user_blocked", request_ip(request), {"blocked_user_id": user_id}
    )
    await db.commit()
    logger.info("User %s blocked user %s", current_user.id, user_id)
    return {"message": "User blocked"}


@router.post("/{user_id}/unblock")
async def unblock_user(
    user_id: int,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
):
    if not await buddy_service.unblock_user(db, current_user.id, user_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "User is not blocked", "code": "NOT_BLOCKED"},
        )
    await log_user_action(
        db, current_user.id, "user_unblocked", request_ip(request), {"unblocked_user_id": user_id}
    )
    await db.commit()
    return {"message": "User unblocked"}
