"""Connection registry unit tests."""

import pytest

from messenger.services.connection_registry import Connection, ConnectionRegistry, ConnectionState
from messenger.services.chat_errors import TransportError


class _Transport:
    def __init__(self, fail: bool = False) -> None:
        self.sent: list[dict] = []
        self.closes: list[tuple[int, str]] = []
        self.fail = fail

    async def receive(self):  # pragma: no cover - not used here
        raise TransportError()

    async def send_json(self, payload: dict) -> None:
        if self.fail:
            raise RuntimeError("broken pipe")
        self.sent.append(payload)

    async def close(self, code: int, reason: str) -> None:
        self.closes.append((code, reason))
        if self.fail:
            raise RuntimeError("already closed")


def _connection(user_id: int | None = None, fail: bool = False) -> Connection:
    connection = Connection(_Transport(fail=fail), "10.0.0.1")
    if user_id is not None:
        connection.bind(user_id, f"user{user_id}@example.com")
    return connection


def test_register_and_lookup() -> None:
    registry = ConnectionRegistry()
    connection = _connection(1)
    assert registry.register(1, connection) is None
    assert registry.lookup(1) is connection
    assert registry.lookup(2) is None
    assert registry.count() == 1
    assert registry.connected_user_ids() == [1]


def test_second_registration_evicts_first() -> None:
    """Registering a second connection returns the one it replaced."""
    registry = ConnectionRegistry()
    first, second = _connection(1), _connection(1)
    registry.register(1, first)
    assert registry.register(1, second) is first
    assert registry.lookup(1) is second
    assert registry.count() == 1


def test_reregistering_same_connection_evicts_nothing() -> None:
    registry = ConnectionRegistry()
    connection = _connection(1)
    registry.register(1, connection)
    assert registry.register(1, connection) is None


def test_remove_is_idempotent() -> None:
    registry = ConnectionRegistry()
    connection = _connection(1)
    registry.register(1, connection)
    assert registry.remove(1) is connection
    assert registry.remove(1) is None
    assert registry.count() == 0


def test_remove_ignores_superseded_connection() -> None:
    """Tearing down an evicted connection must not drop its replacement."""
    registry = ConnectionRegistry()
    old, new = _connection(1), _connection(1)
    registry.register(1, old)
    registry.register(1, new)
    assert registry.remove(1, old) is None
    assert registry.lookup(1) is new
    assert registry.remove(1, new) is new


def test_session_limit_enforcement(monkeypatch) -> None:
    """The 4th session for the same user should be refused."""
    monkeypatch.setattr("messenger.services.connection_registry.settings.max_ws_connections_per_user", 3)
    registry = ConnectionRegistry()
    for connection_id in ("conn-a", "conn-b", "conn-c"):
        assert registry.can_admit(1)
        registry.admit(1, connection_id)
    assert not registry.can_admit(1)
    assert registry.can_admit(2)

    registry.release(1, "conn-a")
    assert registry.can_admit(1)
    assert registry.session_count(1) == 2


def test_release_unknown_session_is_harmless() -> None:
    registry = ConnectionRegistry(max_connections_per_user=1)
    registry.release(7, "missing")
    registry.admit(7, "conn-a")
    registry.release(7, "conn-a")
    registry.release(7, "conn-a")
    assert registry.session_count(7) == 0


@pytest.mark.asyncio
async def test_send_failure_surfaces_as_transport_error() -> None:
    connection = _connection(1, fail=True)
    with pytest.raises(TransportError):
        await connection.send_json({"type": "pong"})


@pytest.mark.asyncio
async def test_close_runs_once_and_swallows_socket_errors() -> None:
    connection = _connection(1, fail=True)
    await connection.close(4000, "New connection established")
    await connection.close(1000, "Connection closed")

    assert connection.close_code == 4000
    assert connection.closed.is_set()
    assert connection.transport.closes == [(4000, "New connection established")]


@pytest.mark.asyncio
async def test_send_after_closing_is_refused() -> None:
    connection = _connection(1)
    connection.state = ConnectionState.CLOSED
    with pytest.raises(TransportError):
        await connection.send_json({"type": "pong"})
    assert connection.transport.sent == []
