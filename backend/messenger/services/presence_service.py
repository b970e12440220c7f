"""Presence fan-out to a user's buddies."""

import asyncio
import logging
from typing import Any, Protocol

from messenger.services.chat_errors import TransportError
from messenger.services.connection_registry import ConnectionRegistry
from messenger.services.time_utils import utc_timestamp

logger = logging.getLogger(__name__)


class PresenceStore(Protocol):
    async def set_status(self, user_id: int, status: str) -> None: ...

    async def buddy_ids(self, user_id: int) -> list[int]: ...


async def deliver(registry: ConnectionRegistry, user_id: int, event: dict[str, Any]) -> bool:
    """Send an event to the user's live connection, if any.

    Returns False when the user is offline or the socket failed mid-send;
    both count as "not delivered" and are never raised.
    """
    connection = registry.lookup(user_id)
    if connection is None or not connection.is_authenticated:
        return False
    try:
        await connection.send_json(event)
    except TransportError as exc:
        logger.debug("Delivery of %s to user %s failed: %s", event.get("type"), user_id, exc)
        return False
    return True


class PresenceNotifier:
    """Persist a user's status, then push it to every connected buddy."""

    def __init__(self, store: PresenceStore, registry: ConnectionRegistry) -> None:
        self.store = store
        self.registry = registry

    async def broadcast_status(self, user_id: int, status: str) -> int:
        """Write the status and fan it out; return how many buddies received it."""
        await self.store.set_status(user_id, status)
        buddy_ids = await self.store.buddy_ids(user_id)
        if not buddy_ids:
            return 0

        event = {
            "type": "buddy_status_change",
            "userId": user_id,
            "status": status,
            "timestamp": utc_timestamp(),
        }
        results = await asyncio.gather(
            *(deliver(self.registry, buddy_id, event) for buddy_id in buddy_ids)
        )
        delivered = sum(1 for ok in results if ok)
        logger.info(
            "User %s is %s (notified %d of %d buddies)",
            user_id,
            status,
            delivered,
            len(buddy_ids),
        )
        return delivered
