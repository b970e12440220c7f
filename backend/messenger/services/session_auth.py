"""Authenticate a WebSocket connection with a bearer access token."""

import logging
from dataclasses import dataclass
from typing import Protocol

from messenger.services.auth_service import ACCESS_TOKEN, decode_token, token_user_id, token_version
from messenger.services.chat_errors import (
    CLOSE_SUPERSEDED,
    PersistenceError,
    TokenInvalid,
    TooManyConnections,
    TransportError,
    WrongTokenClass,
)
from messenger.services.connection_registry import Connection, ConnectionRegistry
from messenger.services.presence_service import PresenceNotifier

logger = logging.getLogger(__name__)


class AuthStore(Protocol):
    async def is_token_revoked(self, token: str, user_id: int, version: int) -> bool: ...


@dataclass(frozen=True)
class UserIdentity:
    user_id: int
    email: str | None = None
    version: int = 0

    def as_payload(self) -> dict:
        return {"id": self.user_id, "email": self.email}


def verify_session_token(token: str) -> UserIdentity:
    """Decode a live-session token; raises ``TokenExpired``, ``TokenInvalid`` or ``WrongTokenClass``."""
    if not token:
        raise TokenInvalid("Authentication token required")
    payload = decode_token(token)
    if payload.get("token_type") != ACCESS_TOKEN:
        raise WrongTokenClass()
    return UserIdentity(
        user_id=token_user_id(payload),
        email=payload.get("email"),
        version=token_version(payload),
    )


class SessionAuthenticator:
    """Bind a connection to a user, register it and announce the user online."""

    def __init__(
        self,
        store: AuthStore,
        registry: ConnectionRegistry,
        presence: PresenceNotifier,
    ) -> None:
        self.store = store
        self.registry = registry
        self.presence = presence

    async def authenticate(self, connection: Connection, credential: str) -> UserIdentity:
        identity = verify_session_token(credential)

        try:
            revoked = await self.store.is_token_revoked(
                credential, identity.user_id, identity.version
            )
        except PersistenceError as exc:
            raise TokenInvalid("Authentication unavailable") from exc
        if revoked:
            raise TokenInvalid("Token has been revoked")

        # The socket may have gone away while the revocation lookup ran.
        if not connection.is_open:
            raise TransportError()

        if not self.registry.can_admit(identity.user_id):
            logger.warning(
                "Refusing connection %s: user %s is at the connection limit",
                connection.id,
                identity.user_id,
            )
            raise TooManyConnections()

        self.registry.admit(identity.user_id, connection.id)
        connection.bind(identity.user_id, identity.email)
        evicted = self.registry.register(identity.user_id, connection)
        if evicted is not None:
            await evicted.close(CLOSE_SUPERSEDED, "New connection established")

        logger.info("WebSocket authenticated for user %s on %s", identity.user_id, connection.id)
        await connection.send_json({"type": "auth_success", "user": identity.as_payload()})

        try:
            await self.presence.broadcast_status(identity.user_id, "online")
        except PersistenceError:
            logger.error("Could not mark user %s online", identity.user_id)
        return identity
