"""Realtime hub: per-connection lifecycle and frame dispatch for ``/ws``.

A connection moves through ``connecting -> authenticating -> authenticated
-> closing -> closed``. ``serve`` owns that lifecycle: it runs the reader,
the heartbeat and the authentication deadline, and always finishes with
``disconnect`` so deregistration, the offline broadcast and timer cleanup
happen whether the socket closed cleanly, died, or was superseded.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from messenger.config import settings
from messenger.schemas.ws import (
    AuthenticateFrame,
    MarkReadFrame,
    PrivateMessageFrame,
    StatusUpdateFrame,
    TypingFrame,
)
from messenger.services.chat_errors import (
    CLOSE_AUTH_FAILED,
    CLOSE_HEARTBEAT_TIMEOUT,
    CLOSE_NORMAL,
    CLOSE_POLICY_VIOLATION,
    AuthError,
    MalformedMessage,
    MessageValidationError,
    PayloadTooLarge,
    PersistenceError,
    RateLimited,
    RelationshipError,
    TransportError,
)
from messenger.services.chat_store import ChatStore
from messenger.services.connection_registry import (
    Connection,
    ConnectionRegistry,
    ConnectionState,
)
from messenger.services.message_router import MessageRouter
from messenger.services.presence_service import PresenceNotifier, deliver
from messenger.services.session_auth import SessionAuthenticator
from messenger.services.time_utils import utc_timestamp
from messenger.services.ws_security import SecurityGate

logger = logging.getLogger(__name__)

FrameHandler = Callable[[Connection, Any], Awaitable[None]]


class RealtimeHub:
    """Compose the registry, security gate, router, presence and authenticator."""

    def __init__(
        self,
        store: ChatStore,
        *,
        registry: ConnectionRegistry | None = None,
        gate: SecurityGate | None = None,
        heartbeat_interval: float | None = None,
        auth_timeout: float | None = None,
        typing_timeout: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry or ConnectionRegistry()
        self.gate = gate or SecurityGate()
        self.presence = PresenceNotifier(store, self.registry)
        self.router = MessageRouter(store, self.registry)
        self.authenticator = SessionAuthenticator(store, self.registry, self.presence)
        self.heartbeat_interval = heartbeat_interval or settings.ws_heartbeat_interval_seconds
        self.auth_timeout = auth_timeout or settings.ws_auth_timeout_seconds
        self.typing_timeout = typing_timeout or settings.typing_indicator_timeout_seconds
        self._background: list[asyncio.Task] = []
        self._handlers: dict[str, FrameHandler] = {
            "authenticate": self._on_authenticate,
            "private_message": self._on_private_message,
            "typing_start": self._on_typing,
            "typing_stop": self._on_typing,
            "ping": self._on_ping,
            "status_update": self._on_status_update,
            "mark_read": self._on_mark_read,
        }

    # ── Connection lifecycle ───────────────────────────────────────

    async def serve(self, connection: Connection) -> None:
        """Run one accepted connection until it closes, then tear it down."""
        if not self.gate.check_connection_rate(connection.ip):
            await connection.close(CLOSE_POLICY_VIOLATION, "Too many connections")
            connection.state = ConnectionState.CLOSED
            return

        connection.state = ConnectionState.AUTHENTICATING
        logger.info("New WebSocket connection %s from %s", connection.id, connection.ip)

        reader = asyncio.create_task(self._read_loop(connection))
        closed = asyncio.create_task(connection.closed.wait())
        helpers = [
            asyncio.create_task(self._expire_unauthenticated(connection)),
            asyncio.create_task(self._heartbeat(connection)),
        ]
        tasks = [reader, closed, *helpers]
        try:
            await asyncio.wait({reader, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self.disconnect(connection)

    async def disconnect(
        self,
        connection: Connection,
        code: int = CLOSE_NORMAL,
        reason: str = "Connection closed",
    ) -> None:
        """Tear a connection down; safe to call more than once."""
        if connection.state in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            return
        connection.state = ConnectionState.CLOSING
        connection.cancel_typing_timers()
        await connection.close(code, reason)

        user_id = connection.user_id
        if user_id is not None:
            self.registry.release(user_id, connection.id)
            removed = self.registry.remove(user_id, connection)
            # A superseded connection leaves the user online through its replacement.
            if removed is not None:
                await self._announce_offline(user_id)

        connection.state = ConnectionState.CLOSED
        logger.info(
            "WebSocket connection %s closed for user %s, code: %s",
            connection.id,
            user_id,
            connection.close_code,
        )

    async def remove_connection(
        self,
        user_id: int,
        code: int = CLOSE_NORMAL,
        reason: str = "Logged out",
    ) -> bool:
        """Disconnect the user's live connection; False if there was none."""
        connection = self.registry.lookup(user_id)
        if connection is None:
            return False
        await self.disconnect(connection, code, reason)
        return True

    async def _announce_offline(self, user_id: int) -> None:
        try:
            await self.presence.broadcast_status(user_id, "offline")
        except PersistenceError:
            logger.error("Error updating status for user %s on disconnect", user_id)

    async def _read_loop(self, connection: Connection) -> None:
        while connection.is_open:
            try:
                raw = await connection.transport.receive()
            except TransportError:
                return
            try:
                await self.handle_frame(connection, raw)
            except TransportError:
                return
            except Exception as exc:
                logger.exception("WebSocket message handling error on %s: %s", connection.id, exc)
                await self._send_error(connection, "Invalid message")

    async def _expire_unauthenticated(self, connection: Connection) -> None:
        await asyncio.sleep(self.auth_timeout)
        if connection.state is ConnectionState.AUTHENTICATING:
            logger.warning("Connection %s did not authenticate in time", connection.id)
            await self._send_quietly(
                connection, {"type": "auth_error", "message": "Authentication timeout"}
            )
            await connection.close(CLOSE_AUTH_FAILED, "Authentication timeout")

    async def _heartbeat(self, connection: Connection) -> None:
        """Probe liveness; a connection silent for a whole interval is terminated."""
        while connection.is_open:
            await asyncio.sleep(self.heartbeat_interval)
            if not connection.is_open:
                return
            if not connection.is_alive:
                logger.warning("WebSocket heartbeat failed for user %s", connection.user_id)
                await connection.close(CLOSE_HEARTBEAT_TIMEOUT, "Heartbeat timeout")
                return
            connection.is_alive = False
            if not await self._send_quietly(
                connection, {"type": "heartbeat", "timestamp": utc_timestamp()}
            ):
                await connection.close(CLOSE_HEARTBEAT_TIMEOUT, "Heartbeat failed")
                return

    # ── Frame dispatch ─────────────────────────────────────────────

    async def handle_frame(self, connection: Connection, raw: str | bytes) -> None:
        """Admit one inbound frame and dispatch it by type."""
        if not self.gate.validate_size(raw):
            logger.warning("Oversized frame on %s, closing", connection.id)
            await connection.close(CLOSE_POLICY_VIOLATION, PayloadTooLarge.default_message)
            return
        connection.is_alive = True

        try:
            message = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            await self._send_error(connection, MalformedMessage.default_message)
            return

        frame = self.gate.validate_structure(message)
        if frame is None:
            await self._send_error(connection, MalformedMessage.default_message)
            return

        if not self.gate.check_message_rate(connection.ip, frame.type):
            await self._send_error(connection, RateLimited.default_message)
            return

        if frame.type != "authenticate" and not connection.is_authenticated:
            await self._send_error(connection, "Not authenticated")
            return

        await self._handlers[frame.type](connection, frame)

    async def _on_authenticate(self, connection: Connection, frame: AuthenticateFrame) -> None:
        if connection.is_authenticated:
            await self._send_error(connection, "Already authenticated")
            return
        try:
            await self.authenticator.authenticate(connection, frame.token)
        except AuthError as exc:
            logger.warning("WebSocket authentication error on %s: %s", connection.id, exc.message)
            await self._send_quietly(connection, {"type": "auth_error", "message": exc.message})
            await connection.close(exc.close_code, exc.message)

    async def _on_private_message(self, connection: Connection, frame: PrivateMessageFrame) -> None:
        try:
            await self.router.route(connection.user_id, frame.to_user_id, frame.message)
        except (MessageValidationError, RelationshipError) as exc:
            await self._send_error(connection, exc.message)
        except PersistenceError as exc:
            logger.error("Private message from %s not stored", connection.user_id)
            await self._send_error(connection, exc.message)

    async def _on_typing(self, connection: Connection, frame: TypingFrame) -> None:
        recipient_id = frame.to_user_id
        previous = connection.typing_timers.pop(recipient_id, None)
        if previous is not None:
            previous.cancel()
        if frame.type == "typing_start":
            connection.typing_timers[recipient_id] = asyncio.create_task(
                self._expire_typing(connection, recipient_id)
            )
        try:
            await self.router.relay_typing(connection.user_id, recipient_id, frame.type)
        except PersistenceError:
            logger.debug("Typing indicator from %s dropped", connection.user_id)

    async def _expire_typing(self, connection: Connection, recipient_id: int) -> None:
        await asyncio.sleep(self.typing_timeout)
        if connection.typing_timers.get(recipient_id) is asyncio.current_task():
            del connection.typing_timers[recipient_id]
        try:
            await self.router.relay_typing(connection.user_id, recipient_id, "typing_stop")
        except PersistenceError:
            logger.debug("Typing expiry from %s dropped", connection.user_id)

    async def _on_ping(self, connection: Connection, frame: Any) -> None:
        await connection.send_json({"type": "pong"})

    async def _on_status_update(self, connection: Connection, frame: StatusUpdateFrame) -> None:
        try:
            await self.presence.broadcast_status(connection.user_id, frame.status)
        except PersistenceError:
            await self._send_error(connection, "Failed to update status")
            return
        await connection.send_json({"type": "status_updated", "status": frame.status})

    async def _on_mark_read(self, connection: Connection, frame: MarkReadFrame) -> None:
        try:
            await self.router.mark_read(connection.user_id, frame.message_id)
        except PersistenceError:
            logger.error("Read receipt for message %s not stored", frame.message_id)

    async def _send_error(self, connection: Connection, message: str) -> None:
        await self._send_quietly(connection, {"type": "error", "message": message})

    async def _send_quietly(self, connection: Connection, event: dict[str, Any]) -> bool:
        try:
            await connection.send_json(event)
        except TransportError:
            return False
        return True

    # ── Outbound helpers for the REST layer ────────────────────────

    async def send_to_user(self, user_id: int, event: dict[str, Any]) -> bool:
        return await deliver(self.registry, user_id, event)

    async def broadcast(self, event: dict[str, Any]) -> int:
        results = await asyncio.gather(
            *(deliver(self.registry, user_id, event) for user_id in self.registry.connected_user_ids())
        )
        return sum(1 for ok in results if ok)

    async def broadcast_server_stats(self) -> int:
        return await self.broadcast(
            {
                "type": "server_stats",
                "connections": self.registry.count(),
                "timestamp": utc_timestamp(),
            }
        )

    def stats(self) -> dict[str, int]:
        return {"connections": self.registry.count(), **self.gate.stats()}

    # ── Background jobs ────────────────────────────────────────────

    def start(self) -> None:
        """Schedule the periodic jobs; call from a running event loop."""
        if self._background:
            return
        jobs: list[tuple[str, float, Callable[[], Awaitable[Any]]]] = [
            ("server-stats", settings.ws_stats_interval_seconds, self.broadcast_server_stats),
            ("rate-limit-sweep", settings.rate_limit_sweep_interval_seconds, self._sweep),
            ("revoked-token-purge", settings.revoked_token_purge_interval_seconds, self._purge_revoked_tokens),
        ]
        for name, interval, job in jobs:
            self._background.append(
                asyncio.create_task(self._run_periodically(name, interval, job), name=name)
            )

    async def shutdown(self) -> None:
        """Stop periodic jobs and close every connection."""
        for task in self._background:
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()

        await self.broadcast(
            {
                "type": "server_shutdown",
                "message": "Server is shutting down",
                "timestamp": utc_timestamp(),
            }
        )
        for connection in self.registry.connections():
            await self.disconnect(connection, CLOSE_NORMAL, "Server shutdown")

    async def _run_periodically(
        self, name: str, interval: float, job: Callable[[], Awaitable[Any]]
    ) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await job()
            except Exception as exc:  # pragma: no cover - job failure branch
                logger.error("Background job %s failed: %s", name, exc)

    async def _sweep(self) -> int:
        return self.gate.sweep()

    async def _purge_revoked_tokens(self) -> int:
        removed = await self.store.purge_revoked_tokens()
        if removed:
            logger.info("Cleaned up %d expired revoked tokens", removed)
        return removed
