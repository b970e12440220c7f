"""Buddy edges, buddy requests and blocks."""

from datetime import datetime, timezone

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.models.social import Block, Buddy, BuddyRequest
from messenger.models.user import User


class BuddyServiceError(Exception):
    """A buddy or block operation rejected for a user-facing reason."""

    def __init__(self, message: str, code: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


def _utc_now_naive() -> datetime:
    """Return a naive UTC datetime without deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _pair_clause(column_a, column_b, user_a: int, user_b: int):
    return or_(
        and_(column_a == user_a, column_b == user_b),
        and_(column_a == user_b, column_b == user_a),
    )


# ── Relationship queries ───────────────────────────────────────────


async def are_buddies(db: AsyncSession, user_a: int, user_b: int) -> bool:
    """Return True if a buddy edge exists in either direction."""
    result = await db.execute(
        select(Buddy.id)
        .where(_pair_clause(Buddy.user_id, Buddy.buddy_user_id, user_a, user_b))
        .limit(1)
    )
    return result.first() is not None


async def is_blocked(db: AsyncSession, blocker_id: int, blocked_id: int) -> bool:
    """Return True if ``blocker_id`` has blocked ``blocked_id``."""
    result = await db.execute(
        select(Block.id)
        .where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
        .limit(1)
    )
    return result.first() is not None


async def buddy_ids(db: AsyncSession, user_id: int) -> list[int]:
    result = await db.execute(
        select(Buddy.buddy_user_id).where(Buddy.user_id == user_id)
    )
    return list(result.scalars().all())


async def has_pending_request(db: AsyncSession, user_a: int, user_b: int) -> bool:
    result = await db.execute(
        select(BuddyRequest.id)
        .where(
            _pair_clause(BuddyRequest.from_user_id, BuddyRequest.to_user_id, user_a, user_b),
            BuddyRequest.status == "pending",
        )
        .limit(1)
    )
    return result.first() is not None


async def relationship(db: AsyncSession, current_user_id: int, other_user_id: int) -> str:
    """Describe how the current user relates to another user."""
    if await are_buddies(db, current_user_id, other_user_id):
        return "buddies"
    if await is_blocked(db, current_user_id, other_user_id):
        return "blocked"
    if await has_pending_request(db, current_user_id, other_user_id):
        return "pending"
    return "none"


# ── Requests ───────────────────────────────────────────────────────


async def send_request(db: AsyncSession, from_user_id: int, to_email: str) -> BuddyRequest:
    """Create a pending buddy request addressed by email."""
    result = await db.execute(
        select(User).where(User.email == to_email.lower(), User.email_verified.is_(True))
    )
    target = result.scalar_one_or_none()
    if target is None:
        raise BuddyServiceError("User not found", "USER_NOT_FOUND", 404)
    if target.id == from_user_id:
        raise BuddyServiceError("Cannot add yourself as a buddy", "SELF_ADD_NOT_ALLOWED")
    if await are_buddies(db, from_user_id, target.id):
        raise BuddyServiceError("Already buddies", "ALREADY_BUDDIES")
    if await is_blocked(db, target.id, from_user_id):
        raise BuddyServiceError("Cannot send request to this user", "USER_BLOCKED", 403)

    existing = await db.execute(
        select(BuddyRequest).where(
            BuddyRequest.from_user_id == from_user_id,
            BuddyRequest.to_user_id == target.id,
        )
    )
    request = existing.scalar_one_or_none()
    if request is not None and request.status == "pending":
        raise BuddyServiceError("Request already pending", "REQUEST_PENDING")

    now = _utc_now_naive()
    if request is None:
        request = BuddyRequest(
            from_user_id=from_user_id,
            to_user_id=target.id,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        db.add(request)
    else:
        # A rejected or expired request is reopened rather than duplicated.
        request.status = "pending"
        request.updated_at = now
    await db.flush()
    return request


async def accept_request(db: AsyncSession, request_id: int, user_id: int) -> int:
    """Accept a pending request and write both buddy rows; return the requester id.

    Both rows and the status change are flushed in the caller's transaction,
    so a failure leaves no one-sided edge behind.
    """
    result = await db.execute(
        select(BuddyRequest).where(
            BuddyRequest.id == request_id,
            BuddyRequest.to_user_id == user_id,
            BuddyRequest.status == "pending",
        )
    )
    request = result.scalar_one_or_none()
    if request is None:
        raise BuddyServiceError(
            "Request not found or already processed", "REQUEST_NOT_FOUND", 404
        )

    from_user_id = request.from_user_id
    if await is_blocked(db, user_id, from_user_id) or await is_blocked(db, from_user_id, user_id):
        raise BuddyServiceError("Cannot accept request from this user", "USER_BLOCKED", 403)

    existing = await db.execute(
        select(Buddy.user_id, Buddy.buddy_user_id).where(
            _pair_clause(Buddy.user_id, Buddy.buddy_user_id, from_user_id, user_id)
        )
    )
    present = {(row.user_id, row.buddy_user_id) for row in existing}
    for owner, buddy in ((from_user_id, user_id), (user_id, from_user_id)):
        if (owner, buddy) not in present:
            db.add(Buddy(user_id=owner, buddy_user_id=buddy))

    now = _utc_now_naive()
    await db.execute(
        update(BuddyRequest)
        .where(
            _pair_clause(BuddyRequest.from_user_id, BuddyRequest.to_user_id, from_user_id, user_id),
            BuddyRequest.status == "pending",
        )
        .values(status="accepted", updated_at=now)
    )
    await db.flush()
    return from_user_id


async def reject_request(db: AsyncSession, request_id: int, user_id: int) -> bool:
    result = await db.execute(
        update(BuddyRequest)
        .where(
            BuddyRequest.id == request_id,
            BuddyRequest.to_user_id == user_id,
            BuddyRequest.status == "pending",
        )
        .values(status="rejected", updated_at=_utc_now_naive())
    )
    return result.rowcount > 0


async def pending_requests(db: AsyncSession, user_id: int) -> list[dict]:
    result = await db.execute(
        select(BuddyRequest, User)
        .join(User, BuddyRequest.from_user_id == User.id)
        .where(BuddyRequest.to_user_id == user_id, BuddyRequest.status == "pending")
        .order_by(BuddyRequest.created_at.desc(), BuddyRequest.id.desc())
    )
    return [
        {
            "id": request.id,
            "from_user_id": request.from_user_id,
            "display_name": sender.display_name,
            "email": sender.email,
            "created_at": request.created_at,
        }
        for request, sender in result.all()
    ]


# ── Buddy list ─────────────────────────────────────────────────────


async def list_buddies(db: AsyncSession, user_id: int) -> list[dict]:
    """Return the user's buddies, online first then by display name."""
    result = await db.execute(
        select(Buddy, User)
        .join(User, Buddy.buddy_user_id == User.id)
        .where(Buddy.user_id == user_id)
        .order_by(User.status.desc(), User.display_name.asc())
    )
    return [
        {
            "id": buddy.id,
            "email": buddy.email,
            "display_name": buddy.display_name,
            "status": buddy.status,
            "avatar_url": buddy.avatar_url,
            "nickname": edge.nickname,
            "group_name": edge.group_name,
        }
        for edge, buddy in result.all()
    ]


async def remove_buddy(db: AsyncSession, user_id: int, buddy_id: int) -> bool:
    """Delete both directions of a buddy edge."""
    result = await db.execute(
        delete(Buddy).where(
            _pair_clause(Buddy.user_id, Buddy.buddy_user_id, user_id, buddy_id)
        )
    )
    return result.rowcount > 0


async def update_buddy(
    db: AsyncSession,
    user_id: int,
    buddy_id: int,
    nickname: str | None = None,
    group_name: str | None = None,
) -> bool:
    """Update the caller's own side of the edge (nickname, group)."""
    values: dict[str, str | None] = {}
    if nickname is not None:
        values["nickname"] = nickname
    if group_name is not None:
        values["group_name"] = group_name
    if not values:
        raise BuddyServiceError("No valid fields to update", "NO_VALID_FIELDS")

    result = await db.execute(
        update(Buddy)
        .where(Buddy.user_id == user_id, Buddy.buddy_user_id == buddy_id)
        .values(**values)
    )
    if result.rowcount == 0:
        raise BuddyServiceError("Buddy relationship not found", "BUDDY_NOT_FOUND", 404)
    return True


# ── Blocks ─────────────────────────────────────────────────────────


async def block_user(db: AsyncSession, blocker_id: int, blocked_id: int) -> Block:
    """Block a user, dropping any buddy edge and pending requests between the pair."""
    if blocker_id == blocked_id:
        raise BuddyServiceError("Cannot block yourself", "SELF_BLOCK_NOT_ALLOWED")
    if await db.get(User, blocked_id) is None:
        raise BuddyServiceError("User not found", "USER_NOT_FOUND", 404)
    if await is_blocked(db, blocker_id, blocked_id):
        raise BuddyServiceError("User already blocked", "ALREADY_BLOCKED")

    block = Block(blocker_id=blocker_id, blocked_id=blocked_id)
    db.add(block)
    await db.execute(
        delete(Buddy).where(
            _pair_clause(Buddy.user_id, Buddy.buddy_user_id, blocker_id, blocked_id)
        )
    )
    await db.execute(
        update(BuddyRequest)
        .where(
            _pair_clause(BuddyRequest.from_user_id, BuddyRequest.to_user_id, blocker_id, blocked_id),
            BuddyRequest.status == "pending",
        )
        .values(status="rejected", updated_at=_utc_now_naive())
    )
    await db.flush()
    return block


async def unblock_user(db: AsyncSession, blocker_id: int, blocked_id: int) -> bool:
    result = await db.execute(
        delete(Block).where(Block.blocker_id == blocker_id, Block.blocked_id == blocked_id)
    )
    return result.rowcount > 0


async def list_blocked(db: AsyncSession, user_id: int) -> list[dict]:
    result = await db.execute(
        select(Block, User)
        .join(User, Block.blocked_id == User.id)
        .where(Block.blocker_id == user_id)
        .order_by(Block.created_at.desc(), Block.id.desc())
    )
    return [
        {
            "id": blocked.id,
            "display_name": blocked.display_name,
            "email": blocked.email,
            "created_at": block.created_at,
        }
        for block, blocked in result.all()
    ]
