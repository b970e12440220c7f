"""Live WebSocket connections keyed by user id."""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Any, Protocol

from messenger.config import settings
from messenger.services.chat_errors import TransportError

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """The duplex socket a connection talks through."""

    async def receive(self) -> str | bytes: ...

    async def send_json(self, payload: dict[str, Any]) -> None: ...

    async def close(self, code: int, reason: str) -> None: ...


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    CLOSING = "closing"
    CLOSED = "closed"


class Connection:
    """A single client socket plus the per-connection runtime state."""

    def __init__(
        self,
        transport: Transport,
        ip: str,
        connection_id: str | None = None,
    ) -> None:
        self.id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.ip = ip
        self.user_id: int | None = None
        self.email: str | None = None
        self.state = ConnectionState.CONNECTING
        self.is_alive = True
        self.close_code: int | None = None
        self.typing_timers: dict[int, asyncio.Task] = {}
        self.closed = asyncio.Event()
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"<Connection {self.id} user={self.user_id} state={self.state.value}>"

    @property
    def is_authenticated(self) -> bool:
        return self.state is ConnectionState.AUTHENTICATED

    @property
    def is_open(self) -> bool:
        return self.state not in (ConnectionState.CLOSING, ConnectionState.CLOSED)

    def bind(self, user_id: int, email: str | None = None) -> None:
        self.user_id = user_id
        self.email = email
        self.state = ConnectionState.AUTHENTICATED

    async def send_json(self, payload: dict[str, Any]) -> None:
        """Send one event; any socket failure surfaces as ``TransportError``."""
        if not self.is_open:
            raise TransportError()
        async with self._send_lock:
            try:
                await self.transport.send_json(payload)
            except Exception as exc:
                raise TransportError(str(exc) or None) from exc

    async def close(self, code: int, reason: str) -> None:
        """Close the socket once; later calls are no-ops."""
        if self.close_code is not None:
            return
        self.close_code = code
        try:
            await self.transport.close(code, reason)
        except Exception as exc:
            # Abrupt disconnects leave nothing to close.
            logger.debug("Close on %r failed: %s", self, exc)
        finally:
            self.closed.set()

    def cancel_typing_timers(self) -> None:
        for task in self.typing_timers.values():
            task.cancel()
        self.typing_timers.clear()


class ConnectionRegistry:
    """Hold at most one live connection per user and count admitted sessions.

    The live map answers "where do I deliver to this user"; session
    accounting enforces the concurrent-connection ceiling and covers
    connections still tearing down after being superseded.
    """

    def __init__(self, max_connections_per_user: int | None = None) -> None:
        self._live: dict[int, Connection] = {}
        self._sessions: dict[int, set[str]] = {}
        self._max_connections_per_user = max_connections_per_user

    @property
    def max_connections_per_user(self) -> int:
        if self._max_connections_per_user is not None:
            return self._max_connections_per_user
        return settings.max_ws_connections_per_user

    # ── live map ───────────────────────────────────────────────────

    def register(self, user_id: int, connection: Connection) -> Connection | None:
        """Install the connection and return the one it replaced, if any."""
        previous = self._live.get(user_id)
        self._live[user_id] = connection
        if previous is connection:
            return None
        if previous is not None:
            logger.info("Connection %s for user %s superseded by %s", previous.id, user_id, connection.id)
        return previous

    def lookup(self, user_id: int) -> Connection | None:
        return self._live.get(user_id)

    def remove(self, user_id: int, connection: Connection | None = None) -> Connection | None:
        """Deregister the user; with ``connection`` only if it is still the live one."""
        current = self._live.get(user_id)
        if current is None:
            return None
        if connection is not None and current is not connection:
            return None
        del self._live[user_id]
        return current

    def count(self) -> int:
        return len(self._live)

    def connected_user_ids(self) -> list[int]:
        return list(self._live)

    def connections(self) -> list[Connection]:
        return list(self._live.values())

    # ── session accounting ─────────────────────────────────────────

    def can_admit(self, user_id: int) -> bool:
        """Return True if the user has fewer than the maximum allowed sessions."""
        active = self._sessions.get(user_id)
        if active is None:
            return True
        return len(active) < self.max_connections_per_user

    def admit(self, user_id: int, connection_id: str) -> None:
        if user_id not in self._sessions:
            self._sessions[user_id] = set()
        self._sessions[user_id].add(connection_id)

    def release(self, user_id: int, connection_id: str) -> None:
        active = self._sessions.get(user_id)
        if active is not None:
            active.discard(connection_id)
            if not active:
                del self._sessions[user_id]

    def session_count(self, user_id: int) -> int:
        return len(self._sessions.get(user_id, ()))
