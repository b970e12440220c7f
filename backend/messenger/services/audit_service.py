"""Record user audit log entries."""

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.models.audit import AuditLog

logger = logging.getLogger(__name__)


async def log_user_action(
    db: AsyncSession,
    user_id: int | None,
    action: str,
    ip_address: str | None = None,
    details: dict | None = None,
) -> AuditLog:
    """Create an audit log entry in the caller's transaction."""
    entry = AuditLog(
        user_id=user_id,
        action=action,
        ip_address=ip_address,
        details=json.dumps(details, default=str) if details else None,
    )
    db.add(entry)
    await db.flush()
    logger.debug("Audit %s by user %s", action, user_id)
    return entry


async def get_user_actions(
    db: AsyncSession,
    user_id: int,
    limit: int = 50,
) -> list[dict]:
    """Return the user's most recent audit entries, newest first."""
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.user_id == user_id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
    )
    return [
        {
            "id": entry.id,
            "action": entry.action,
            "ip_address": entry.ip_address,
            "details": json.loads(entry.details) if entry.details else None,
            "created_at": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in result.scalars().all()
    ]
