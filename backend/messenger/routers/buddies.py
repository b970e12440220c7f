"""Buddy list endpoints: requests, acceptance, removal and search."""

import logging
from typing import NoReturn

from fastapi import APIRouter, HTTPException, Query, Request

from messenger.dependencies import CurrentUser, DbSession, Hub
from messenger.models.user import User
from messenger.routers.auth import request_ip
from messenger.schemas.buddy import BuddyOut, BuddyRequestCreate, BuddyRequestOut, BuddyUpdate
from messenger.schemas.user import UserSearchResult
from messenger.services import buddy_service
from messenger.services.audit_service import log_user_action
from messenger.services.buddy_service import BuddyServiceError
from messenger.services.time_utils import utc_timestamp
from messenger.services.user_service import search_users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/buddies", tags=["buddies"])


def raise_service_error(exc: BuddyServiceError) -> NoReturn:
    raise HTTPException(
        status_code=exc.status_code,
        detail={"error": exc.message, "code": exc.code},
    )


@router.post("/request", status_code=201)
async def send_buddy_request(
    body: BuddyRequestCreate,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
):
    """Send a buddy request to a verified user by email."""
    try:
        buddy_request = await buddy_service.send_request(db, current_user.id, body.email)
    except BuddyServiceError as exc:
        raise_service_error(exc)
    await log_user_action(
        db,
        current_user.id,
        "buddy_request_sent",
        request_ip(request),
        {"to_user_id": buddy_request.to_user_id},
    )
    await db.commit()

    await hub.send_to_user(
        buddy_request.to_user_id,
        {
            "type": "buddy_request",
            "requestId": buddy_request.id,
            "fromUserId": current_user.id,
            "fromDisplayName": current_user.display_name,
            "timestamp": utc_timestamp(),
        },
    )
    return {"message": "Buddy request sent", "request_id": buddy_request.id}


@router.post("/request/{request_id}/accept")
async def accept_buddy_request(
    request_id: int,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
):
    """Accept a pending request; both users become buddies."""
    try:
        requester_id = await buddy_service.accept_request(db, request_id, current_user.id)
    except BuddyServiceError as exc:
        raise_service_error(exc)
    await log_user_action(
        db,
        current_user.id,
        "buddy_request_accepted",
        request_ip(request),
        {"request_id": request_id, "from_user_id": requester_id},
    )
    await db.commit()

    requester = await db.get(User, requester_id)
    timestamp = utc_timestamp()
    await hub.send_to_user(
        requester_id,
        {
            "type": "buddy_added",
            "buddyId": current_user.id,
            "displayName": current_user.display_name,
            "status": current_user.status,
            "timestamp": timestamp,
        },
    )
    if requester is not None:
        await hub.send_to_user(
            current_user.id,
            {
                "type": "buddy_added",
                "buddyId": requester.id,
                "displayName": requester.display_name,
                "status": requester.status,
                "timestamp": timestamp,
            },
        )
    return {"message": "Buddy request accepted", "buddy_id": requester_id}


@router.post("/request/{request_id}/reject")
async def reject_buddy_request(
    request_id: int,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
):
    if not await buddy_service.reject_request(db, request_id, current_user.id):
        raise HTTPException(
            status_code=404,
            detail={"error": "Request not found or already processed", "code": "REQUEST_NOT_FOUND"},
        )
    await log_user_action(
        db, current_user.id, "buddy_request_rejected", request_ip(request), {"request_id": request_id}
    )
    await db.commit()
    return {"message": "Buddy request rejected"}


@router.get("/requests/pending", response_model=list[BuddyRequestOut])
async def get_pending_requests(current_user: CurrentUser, db: DbSession):
    return await buddy_service.pending_requests(db, current_user.id)


@router.get("/search", response_model=list[UserSearchResult])
async def search_for_buddies(
    current_user: CurrentUser,
    db: DbSession,
    query: str = Query(min_length=2, max_length=100),
):
    """Search verified users who are not already buddies."""
    return await search_users(db, query, current_user.id, exclude_buddies=True)


@router.get("", response_model=list[BuddyOut])
async def get_buddies(current_user: CurrentUser, db: DbSession):
    """Return the buddy list, online buddies first."""
    return await buddy_service.list_buddies(db, current_user.id)


@router.delete("/{buddy_id}")
async def remove_buddy(
    buddy_id: int,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
):
    """Remove a buddy in both directions."""
    if not await buddy_service.remove_buddy(db, current_user.id, buddy_id):
        raise HTTPException(
            status_code=404,
            detail={"error": "Buddy relationship not found", "code": "BUDDY_NOT_FOUND"},
        )
    await log_user_action(
        db, current_user.id, "buddy_removed", request_ip(request), {"buddy_id": buddy_id}
    )
    await db.commit()

    await hub.send_to_user(buddy_id, {"type": "buddy_removed", "buddyId": current_user.id})
    return {"message": "Buddy removed"}


@router.put("/{buddy_id}")
async def update_buddy(
    buddy_id: int,
    body: BuddyUpdate,
    request: Request,
    current_user: CurrentUser,
    db: DbSession,
):
    """Set the nickname or group shown for a buddy."""
    try:
        await buddy_service.update_buddy(
            db, current_user.id, buddy_id, nickname=body.nickname, group_name=body.group_name
        )
    except BuddyServiceError as exc:
        raise_service_error(exc)
    await log_user_action(
        db,
        current_user.id,
        "buddy_updated",
        request_ip(request),
        body.model_dump(exclude_none=True) | {"buddy_id": buddy_id},
    )
    await db.commit()
    return {"message": "Buddy updated"}
