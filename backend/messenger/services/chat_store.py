"""Datastore used by the realtime core.

Each call opens its own session and commits before returning, so a call
is one transaction. Database failures surface as ``PersistenceError``.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messenger.services import buddy_service, message_service, user_service
from messenger.services.chat_errors import PersistenceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredMessage:
    id: int
    from_user_id: int
    to_user_id: int
    body: str
    created_at: datetime


class ChatStore:
    """Buddy, block, message and status queries over a session factory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                yield db
                await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Datastore %s failed: %s", operation, exc)
            raise PersistenceError() from exc

    async def are_buddies(self, user_a: int, user_b: int) -> bool:
        async with self._transaction("are_buddies") as db:
            return await buddy_service.are_buddies(db, user_a, user_b)

    async def is_blocked(self, blocker_id: int, blocked_id: int) -> bool:
        async with self._transaction("is_blocked") as db:
            return await buddy_service.is_blocked(db, blocker_id, blocked_id)

    async def buddy_ids(self, user_id: int) -> list[int]:
        async with self._transaction("buddy_ids") as db:
            return await buddy_service.buddy_ids(db, user_id)

    async def save_message(self, from_user_id: int, to_user_id: int, body: str) -> StoredMessage:
        async with self._transaction("save_message") as db:
            message = await message_service.save_message(db, from_user_id, to_user_id, body)
            stored = StoredMessage(
                id=message.id,
                from_user_id=message.from_user_id,
                to_user_id=message.to_user_id,
                body=message.body,
                created_at=message.created_at,
            )
        return stored

    async def mark_message_read(self, message_id: int, reader_id: int) -> int | None:
        async with self._transaction("mark_message_read") as db:
            return await message_service.mark_message_read(db, message_id, reader_id)

    async def set_status(self, user_id: int, status: str) -> None:
        async with self._transaction("set_status") as db:
            await user_service.set_status(db, user_id, status)

    async def is_token_revoked(self, token: str, user_id: int, version: int) -> bool:
        async with self._transaction("is_token_revoked") as db:
            if await user_service.is_token_revoked(db, token):
                return True
            return await user_service.is_session_stale(db, user_id, version)

    async def purge_revoked_tokens(self) -> int:
        async with self._transaction("purge_revoked_tokens") as db:
            return await user_service.purge_revoked_tokens(db)
