"""Route private messages, typing indicators and read receipts between users."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from messenger.services.chat_errors import Blocked, InvalidContent, NotBuddies
from messenger.services.chat_store import StoredMessage
from messenger.services.connection_registry import ConnectionRegistry
from messenger.services.presence_service import deliver
from messenger.services.time_utils import isoformat_utc, utc_timestamp
from messenger.services.ws_security import sanitize, validate_content

logger = logging.getLogger(__name__)


class RouterStore(Protocol):
    async def are_buddies(self, user_a: int, user_b: int) -> bool: ...

    async def is_blocked(self, blocker_id: int, blocked_id: int) -> bool: ...

    async def save_message(self, from_user_id: int, to_user_id: int, body: str) -> StoredMessage: ...

    async def mark_message_read(self, message_id: int, reader_id: int) -> int | None: ...


@dataclass(frozen=True)
class DeliveryReceipt:
    message_id: int
    from_user_id: int
    to_user_id: int
    message: str
    created_at: datetime
    delivered: bool

    @property
    def timestamp(self) -> str:
        return isoformat_utc(self.created_at)


class MessageRouter:
    """Validate, persist and deliver chat traffic between buddies."""

    def __init__(self, store: RouterStore, registry: ConnectionRegistry) -> None:
        self.store = store
        self.registry = registry

    async def route(self, sender_id: int, recipient_id: int, raw_body: str) -> DeliveryReceipt:
        """Persist a private message and push it to both ends.

        Raises ``InvalidContent``, ``NotBuddies``, ``Blocked`` or
        ``PersistenceError``; nothing is delivered unless the message was
        stored. The recipient being offline, or going away mid-route, is
        not an error: the stored message waits for the conversation fetch.
        """
        if not validate_content(raw_body):
            raise InvalidContent()
        body = sanitize(raw_body)

        if not await self.store.are_buddies(sender_id, recipient_id):
            raise NotBuddies()
        if await self.store.is_blocked(recipient_id, sender_id):
            raise Blocked()

        stored = await self.store.save_message(sender_id, recipient_id, body)

        event = {
            "type": "private_message",
            "fromUserId": sender_id,
            "toUserId": recipient_id,
            "message": stored.body,
            "messageId": stored.id,
            "timestamp": isoformat_utc(stored.created_at),
        }
        await deliver(self.registry, sender_id, {**event, "direction": "outgoing"})
        delivered = await deliver(self.registry, recipient_id, {**event, "direction": "incoming"})

        logger.info(
            "Message %s from %s to %s (%s)",
            stored.id,
            sender_id,
            recipient_id,
            "delivered" if delivered else "stored for later",
        )
        return DeliveryReceipt(
            message_id=stored.id,
            from_user_id=sender_id,
            to_user_id=recipient_id,
            message=stored.body,
            created_at=stored.created_at,
            delivered=delivered,
        )

    async def relay_typing(self, sender_id: int, recipient_id: int, kind: str) -> bool:
        """Forward a typing indicator; non-buddies and blocked senders are ignored."""
        if not await self.store.are_buddies(sender_id, recipient_id):
            return False
        if await self.store.is_blocked(recipient_id, sender_id):
            return False
        return await deliver(
            self.registry,
            recipient_id,
            {"type": kind, "fromUserId": sender_id, "timestamp": utc_timestamp()},
        )

    async def mark_read(self, reader_id: int, message_id: int) -> bool:
        """Mark one message read and tell its sender; unknown ids are ignored."""
        sender_id = await self.store.mark_message_read(message_id, reader_id)
        if sender_id is None:
            return False
        await self.notify_read(reader_id, sender_id, [message_id])
        return True

    async def notify_read(self, reader_id: int, sender_id: int, message_ids: list[int]) -> int:
        """Send ``message_read`` receipts for messages already marked read."""
        delivered = 0
        for message_id in message_ids:
            ok = await deliver(
                self.registry,
                sender_id,
                {
                    "type": "message_read",
                    "messageId": message_id,
                    "readerId": reader_id,
                    "timestamp": utc_timestamp(),
                },
            )
            if not ok:
                break
            delivered += 1
        return delivered
