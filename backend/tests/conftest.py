"""Shared test fixtures and in-memory fakes for the realtime core."""

import asyncio
import json
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from messenger.services.auth_service import create_access_token
from messenger.services.chat_errors import PersistenceError, TransportError
from messenger.services.chat_store import StoredMessage
from messenger.services.connection_registry import Connection, ConnectionRegistry, ConnectionState
from messenger.services.realtime_hub import RealtimeHub
from messenger.services.ws_security import SecurityGate


class FakeTransport:
    """Socket stand-in: tests push inbound frames, sent events are recorded."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed_with: tuple[int, str] | None = None
        self.fail_sends = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    def feed(self, raw: str | bytes) -> None:
        self._inbox.put_nowait(raw)

    def feed_json(self, payload: dict) -> None:
        self.feed(json.dumps(payload))

    def hang_up(self) -> None:
        self._inbox.put_nowait(None)

    def events(self, event_type: str) -> list[dict]:
        return [event for event in self.sent if event.get("type") == event_type]

    async def receive(self) -> str | bytes:
        item = await self._inbox.get()
        if item is None:
            raise TransportError("Client disconnected")
        return item

    async def send_json(self, payload: dict) -> None:
        if self.fail_sends:
            raise RuntimeError("socket is gone")
        self.sent.append(payload)

    async def close(self, code: int, reason: str) -> None:
        self.closed_with = (code, reason)
        self._inbox.put_nowait(None)


class FakeStore:
    """In-memory datastore with switchable failures per operation."""

    def __init__(self) -> None:
        self.buddies: set[frozenset[int]] = set()
        self.blocks: set[tuple[int, int]] = set()
        self.statuses: dict[int, str] = {}
        self.status_history: list[tuple[int, str]] = []
        self.messages: list[StoredMessage] = []
        self.read: set[int] = set()
        self.revoked: set[str] = set()
        self.token_versions: dict[int, int] = {}
        self.failing: set[str] = set()

    def befriend(self, user_a: int, user_b: int) -> None:
        self.buddies.add(frozenset((user_a, user_b)))

    def block(self, blocker_id: int, blocked_id: int) -> None:
        self.blocks.add((blocker_id, blocked_id))
        self.buddies.discard(frozenset((blocker_id, blocked_id)))

    def _check(self, operation: str) -> None:
        if operation in self.failing:
            raise PersistenceError()

    async def are_buddies(self, user_a: int, user_b: int) -> bool:
        self._check("are_buddies")
        return frozenset((user_a, user_b)) in self.buddies

    async def is_blocked(self, blocker_id: int, blocked_id: int) -> bool:
        self._check("is_blocked")
        return (blocker_id, blocked_id) in self.blocks

    async def buddy_ids(self, user_id: int) -> list[int]:
        self._check("buddy_ids")
        return sorted(
            next(iter(pair - {user_id})) for pair in self.buddies if user_id in pair
        )

    async def save_message(self, from_user_id: int, to_user_id: int, body: str) -> StoredMessage:
        self._check("save_message")
        stored = StoredMessage(
            id=len(self.messages) + 1,
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            body=body,
            created_at=datetime.now(timezone.utc).replace(tzinfo=None),
        )
        self.messages.append(stored)
        return stored

    async def mark_message_read(self, message_id: int, reader_id: int) -> int | None:
        self._check("mark_message_read")
        for message in self.messages:
            if message.id == message_id and message.to_user_id == reader_id:
                self.read.add(message_id)
                return message.from_user_id
        return None

    async def set_status(self, user_id: int, status: str) -> None:
        self._check("set_status")
        self.statuses[user_id] = status
        self.status_history.append((user_id, status))

    async def is_token_revoked(self, token: str, user_id: int, version: int) -> bool:
        self._check("is_token_revoked")
        return token in self.revoked or self.token_versions.get(user_id, 0) != version

    async def purge_revoked_tokens(self) -> int:
        self._check("purge_revoked_tokens")
        return 0


class LiveConnections:
    """Open connections against a hub and wait on what they receive."""

    def __init__(self) -> None:
        self.tasks: list[asyncio.Task] = []

    @staticmethod
    def token_for(user_id: int) -> str:
        return create_access_token(user_id, f"user{user_id}@example.com")

    @staticmethod
    async def wait_until(predicate, timeout: float = 2.0) -> None:
        """Poll ``predicate`` until it holds, failing the test after ``timeout``."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met in time")
            await asyncio.sleep(0.01)

    async def open(self, hub: RealtimeHub, ip: str = "10.0.0.1") -> Connection:
        connection = Connection(FakeTransport(), ip)
        self.tasks.append(asyncio.create_task(hub.serve(connection)))
        await asyncio.sleep(0)
        return connection

    async def login(self, hub: RealtimeHub, user_id: int, ip: str = "10.0.0.1") -> Connection:
        connection = await self.open(hub, ip)
        connection.transport.feed_json({"type": "authenticate", "token": self.token_for(user_id)})
        await self.wait_until(
            lambda: bool(connection.transport.events("auth_success"))
            or connection.close_code is not None
        )
        return connection

    async def wait_closed(self, connection: Connection) -> None:
        await self.wait_until(lambda: connection.state.value == "closed")


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry(max_connections_per_user=3)


@pytest.fixture
def hub(store, registry) -> RealtimeHub:
    return RealtimeHub(
        store,
        registry=registry,
        gate=SecurityGate(max_payload_bytes=10 * 1024, max_connections_per_ip=10),
        heartbeat_interval=30.0,
        auth_timeout=5.0,
        typing_timeout=5.0,
    )


@pytest_asyncio.fixture
async def live():
    """Connection helper whose serving tasks are cancelled at teardown."""
    connections = LiveConnections()
    yield connections
    for task in connections.tasks:
        task.cancel()
    await asyncio.gather(*connections.tasks, return_exceptions=True)


@pytest.fixture
def online(registry):
    """Register an authenticated fake connection for a user."""

    def bring_online(user_id: int) -> Connection:
        connection = Connection(FakeTransport(), "10.0.0.1")
        connection.bind(user_id, f"user{user_id}@example.com")
        registry.register(user_id, connection)
        return connection

    return bring_online


@pytest.fixture
def pending():
    """Build fresh connections that have not authenticated yet."""

    def make(ip: str = "10.0.0.1") -> Connection:
        connection = Connection(FakeTransport(), ip)
        connection.state = ConnectionState.AUTHENTICATING
        return connection

    return make
