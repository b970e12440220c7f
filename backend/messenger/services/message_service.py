"""Private message persistence and conversation queries."""

from datetime import datetime, timezone
from math import ceil

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.models.message import Message
from messenger.models.user import User


def _utc_now_naive() -> datetime:
    """Return a naive UTC datetime without deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _conversation_clause(user_a: int, user_b: int):
    return or_(
        and_(Message.from_user_id == user_a, Message.to_user_id == user_b),
        and_(Message.from_user_id == user_b, Message.to_user_id == user_a),
    )


def message_payload(message: Message, names: dict[int, str] | None = None) -> dict:
    names = names or {}
    return {
        "id": message.id,
        "from_user_id": message.from_user_id,
        "to_user_id": message.to_user_id,
        "message": message.body,
        "read": message.read,
        "created_at": message.created_at.isoformat() if message.created_at else None,
        "from_display_name": names.get(message.from_user_id),
        "to_display_name": names.get(message.to_user_id),
    }


async def save_message(
    db: AsyncSession, from_user_id: int, to_user_id: int, body: str
) -> Message:
    """Append a message; the id and timestamp are available after flush."""
    msg = Message(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        body=body,
        read=False,
        created_at=_utc_now_naive(),
    )
    db.add(msg)
    await db.flush()
    return msg


async def get_conversation(
    db: AsyncSession,
    user_id: int,
    other_user_id: int,
    page: int = 1,
    limit: int = 50,
) -> dict:
    """Return one page of a conversation in chronological order.

    Pages count backwards from the newest message.
    """
    count_result = await db.execute(
        select(func.count(Message.id)).where(_conversation_clause(user_id, other_user_id))
    )
    total = count_result.scalar() or 0

    offset = (page - 1) * limit
    result = await db.execute(
        select(Message)
        .where(_conversation_clause(user_id, other_user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .offset(offset)
        .limit(limit)
    )
    messages = list(result.scalars().all())
    messages.reverse()

    names_result = await db.execute(
        select(User.id, User.display_name).where(User.id.in_([user_id, other_user_id]))
    )
    names = {row.id: row.display_name for row in names_result}

    return {
        "messages": [message_payload(message, names) for message in messages],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": ceil(total / limit) if limit > 0 else 0,
        },
    }


async def mark_conversation_read(
    db: AsyncSession, reader_id: int, other_user_id: int
) -> list[int]:
    """Mark every unread message from ``other_user_id`` as read; return their ids."""
    result = await db.execute(
        select(Message.id).where(
            Message.to_user_id == reader_id,
            Message.from_user_id == other_user_id,
            Message.read.is_(False),
        )
    )
    message_ids = list(result.scalars().all())
    if message_ids:
        await db.execute(
            update(Message).where(Message.id.in_(message_ids)).values(read=True)
        )
    return message_ids


async def mark_message_read(
    db: AsyncSession, message_id: int, reader_id: int
) -> int | None:
    """Mark a message addressed to the reader as read; return its sender id."""
    result = await db.execute(
        select(Message).where(Message.id == message_id, Message.to_user_id == reader_id)
    )
    message = result.scalar_one_or_none()
    if message is None:
        return None
    message.read = True
    await db.flush()
    return message.from_user_id


async def unread_counts(db: AsyncSession, user_id: int) -> dict:
    result = await db.execute(
        select(Message.from_user_id, func.count(Message.id))
        .where(Message.to_user_id == user_id, Message.read.is_(False))
        .group_by(Message.from_user_id)
    )
    counts = {str(from_user_id): count for from_user_id, count in result.all()}
    return {
        "unread_counts": counts,
        "total_unread": sum(counts.values()),
    }


async def delete_message(db: AsyncSession, message_id: int, user_id: int) -> bool:
    """Delete a message; only its sender may do so."""
    result = await db.execute(
        delete(Message).where(Message.id == message_id, Message.from_user_id == user_id)
    )
    return result.rowcount > 0
