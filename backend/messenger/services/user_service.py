"""User lookups, presence status and revoked token storage."""

from datetime import datetime, timezone

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.models.social import Block, Buddy
from messenger.models.token import RevokedToken
from messenger.models.user import USER_STATUSES, User
from messenger.services.auth_service import token_revocation_key

SEARCH_LIMIT = 20


def _utc_now_naive() -> datetime:
    """Return a naive UTC datetime without deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def set_status(db: AsyncSession, user_id: int, status: str) -> bool:
    """Persist a presence status; return False if the user does not exist."""
    if status not in USER_STATUSES:
        raise ValueError(f"Invalid status: {status}")
    result = await db.execute(
        update(User).where(User.id == user_id).values(status=status)
    )
    return result.rowcount > 0


async def search_users(
    db: AsyncSession,
    query: str,
    current_user_id: int | None = None,
    exclude_buddies: bool = False,
) -> list[dict]:
    """Search verified users by email or display name."""
    pattern = f"%{query.strip()}%"
    stmt = select(User).where(
        or_(User.email.ilike(pattern), User.display_name.ilike(pattern)),
        User.email_verified.is_(True),
    )
    if current_user_id is not None:
        blocked = select(Block.blocked_id).where(Block.blocker_id == current_user_id)
        stmt = stmt.where(User.id != current_user_id, User.id.not_in(blocked))
        if exclude_buddies:
            buddies = select(Buddy.buddy_user_id).where(Buddy.user_id == current_user_id)
            stmt = stmt.where(User.id.not_in(buddies))
    result = await db.execute(stmt.order_by(User.display_name.asc()).limit(SEARCH_LIMIT))
    return [
        {
            "id": user.id,
            "email": user.email,
            "display_name": user.display_name,
            "status": user.status,
            "avatar_url": user.avatar_url,
        }
        for user in result.scalars().all()
    ]


# ── Revoked tokens ─────────────────────────────────────────────────


async def revoke_token(db: AsyncSession, token: str, expires_at: datetime) -> None:
    """Record a revoked access token until it would have expired anyway."""
    key = token_revocation_key(token)
    if await db.get(RevokedToken, key) is not None:
        return
    db.add(RevokedToken(token_hash=key, expires_at=expires_at))
    await db.flush()


async def is_token_revoked(db: AsyncSession, token: str) -> bool:
    result = await db.execute(
        select(RevokedToken.token_hash).where(
            RevokedToken.token_hash == token_revocation_key(token),
            RevokedToken.expires_at > _utc_now_naive(),
        )
    )
    return result.first() is not None


async def purge_revoked_tokens(db: AsyncSession) -> int:
    result = await db.execute(
        delete(RevokedToken).where(RevokedToken.expires_at <= _utc_now_naive())
    )
    return result.rowcount or 0


async def is_session_stale(db: AsyncSession, user_id: int, version: int) -> bool:
    """Return True if the user logged out everywhere after ``version`` was minted."""
    current = await db.scalar(select(User.token_version).where(User.id == user_id))
    return current is not None and current != version


async def end_all_sessions(db: AsyncSession, user: User) -> int:
    """Invalidate every access and refresh token issued to the user so far."""
    user.token_version += 1
    await db.flush()
    return user.token_version


async def mark_email_verified(db: AsyncSession, user: User) -> bool:
    """Flag the user's email as verified; False if it already was."""
    if user.email_verified:
        return False
    user.email_verified = True
    await db.flush()
    return True
