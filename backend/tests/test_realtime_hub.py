"""Realtime hub tests: lifecycle, dispatch and teardown over fake sockets."""

import asyncio

import pytest

from messenger.services.chat_errors import (
    CLOSE_AUTH_FAILED,
    CLOSE_HEARTBEAT_TIMEOUT,
    CLOSE_NORMAL,
    CLOSE_POLICY_VIOLATION,
    CLOSE_SUPERSEDED,
)
from messenger.services.connection_registry import ConnectionState
from messenger.services.realtime_hub import RealtimeHub
from messenger.services.ws_security import SecurityGate


def _offline_events(connection, user_id: int) -> list[dict]:
    return [
        event
        for event in connection.transport.events("buddy_status_change")
        if event["userId"] == user_id and event["status"] == "offline"
    ]


@pytest.mark.asyncio
async def test_authenticated_session_is_registered(hub, store, live) -> None:
    connection = await live.login(hub, 1)
    assert connection.state is ConnectionState.AUTHENTICATED
    assert hub.registry.lookup(1) is connection
    assert store.statuses[1] == "online"


@pytest.mark.asyncio
async def test_frames_before_authentication_are_refused(hub, live) -> None:
    connection = await live.open(hub)
    connection.transport.feed_json({"type": "ping"})
    await live.wait_until(lambda: bool(connection.transport.events("error")))
    assert connection.transport.events("error") == [{"type": "error", "message": "Not authenticated"}]
    assert connection.is_open


@pytest.mark.asyncio
async def test_bad_token_gets_auth_error_then_close(hub, live) -> None:
    connection = await live.open(hub)
    connection.transport.feed_json({"type": "authenticate", "token": "garbage"})
    await live.wait_closed(connection)
    assert connection.transport.events("auth_error")
    assert connection.transport.closed_with[0] == CLOSE_AUTH_FAILED
    assert hub.registry.count() == 0


@pytest.mark.asyncio
async def test_authentication_deadline(store, registry, live) -> None:
    hub = RealtimeHub(store, registry=registry, auth_timeout=0.05, heartbeat_interval=30.0)
    connection = await live.open(hub)
    await live.wait_closed(connection)
    assert connection.transport.events("auth_error") == [
        {"type": "auth_error", "message": "Authentication timeout"}
    ]
    assert connection.transport.closed_with[0] == CLOSE_AUTH_FAILED


@pytest.mark.asyncio
async def test_reauthentication_is_refused(hub, live) -> None:
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "authenticate", "token": live.token_for(1)})
    await live.wait_until(lambda: bool(connection.transport.events("error")))
    assert connection.transport.events("error")[0]["message"] == "Already authenticated"
    assert hub.registry.lookup(1) is connection


@pytest.mark.asyncio
async def test_ping_gets_pong(hub, live) -> None:
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "ping"})
    await live.wait_until(lambda: bool(connection.transport.events("pong")))


@pytest.mark.asyncio
async def test_invalid_json_keeps_connection_open(hub, live) -> None:
    connection = await live.login(hub, 1)
    connection.transport.feed("{not json")
    connection.transport.feed_json({"type": "video_call"})
    await live.wait_until(lambda: len(connection.transport.events("error")) == 2)
    assert {e["message"] for e in connection.transport.events("error")} == {"Invalid message format"}
    assert connection.is_open


@pytest.mark.asyncio
async def test_oversized_frame_closes_before_validation(hub, live) -> None:
    connection = await live.login(hub, 1)
    connection.transport.feed("x" * (10 * 1024 + 1))
    await live.wait_closed(connection)
    assert connection.transport.closed_with == (CLOSE_POLICY_VIOLATION, "Message too large")
    assert connection.transport.events("error") == []
    assert hub.registry.lookup(1) is None


@pytest.mark.asyncio
async def test_message_to_offline_buddy(hub, store, live) -> None:
    """B offline: message stored, A gets the outgoing echo, nothing reaches B."""
    store.befriend(1, 2)
    sender = await live.login(hub, 1)
    sender.transport.feed_json({"type": "private_message", "toUserId": 2, "message": "hello"})
    await live.wait_until(lambda: bool(sender.transport.events("private_message")))

    [event] = sender.transport.events("private_message")
    assert event["direction"] == "outgoing"
    assert event["messageId"] == 1
    assert [m.body for m in store.messages] == ["hello"]


@pytest.mark.asyncio
async def test_message_between_online_buddies(hub, store, live) -> None:
    store.befriend(1, 2)
    sender = await live.login(hub, 1)
    recipient = await live.login(hub, 2)
    sender.transport.feed_json({"type": "private_message", "toUserId": 2, "message": "hi B"})
    await live.wait_until(lambda: bool(recipient.transport.events("private_message")))
    assert recipient.transport.events("private_message")[0]["direction"] == "incoming"


@pytest.mark.asyncio
async def test_sixty_first_message_is_rate_limited(hub, store, live) -> None:
    store.befriend(1, 2)
    connection = await live.login(hub, 1)
    for n in range(61):
        connection.transport.feed_json(
            {"type": "private_message", "toUserId": 2, "message": f"message {n}"}
        )
    await live.wait_until(lambda: bool(connection.transport.events("error")))

    assert len(connection.transport.events("private_message")) == 60
    assert connection.transport.events("error") == [{"type": "error", "message": "Rate limit exceeded"}]
    assert len(store.messages) == 60
    assert connection.is_open


@pytest.mark.asyncio
async def test_blocked_user_cannot_message(hub, store, live) -> None:
    """A blocks B; B's message is refused and no row is inserted."""
    store.befriend(1, 2)
    store.block(1, 2)
    blocked = await live.login(hub, 2)
    blocked.transport.feed_json({"type": "private_message", "toUserId": 1, "message": "hey"})
    await live.wait_until(lambda: bool(blocked.transport.events("error")))

    assert blocked.transport.events("error")[0]["message"] in {
        "You can only message your buddies",
        "Cannot send message to this user",
    }
    assert store.messages == []


@pytest.mark.asyncio
async def test_persistence_failure_is_reported_to_sender(hub, store, live) -> None:
    store.befriend(1, 2)
    store.failing.add("save_message")
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "private_message", "toUserId": 2, "message": "hello"})
    await live.wait_until(lambda: bool(connection.transport.events("error")))
    assert connection.transport.events("error")[0]["message"] == "Failed to send message"
    assert connection.is_open


@pytest.mark.asyncio
async def test_new_session_evicts_old_without_going_offline(hub, store, live, online) -> None:
    store.befriend(1, 2)
    buddy = online(2)
    first = await live.login(hub, 1)
    second = await live.login(hub, 1)
    await live.wait_closed(first)

    assert first.transport.closed_with[0] == CLOSE_SUPERSEDED
    assert hub.registry.lookup(1) is second
    assert hub.registry.session_count(1) == 1
    assert (1, "offline") not in store.status_history
    assert _offline_events(buddy, 1) == []


@pytest.mark.asyncio
async def test_client_hang_up_announces_offline(hub, store, live, online) -> None:
    store.befriend(1, 2)
    buddy = online(2)
    connection = await live.login(hub, 1)
    connection.transport.hang_up()
    await live.wait_closed(connection)

    assert hub.registry.lookup(1) is None
    assert hub.registry.session_count(1) == 0
    assert store.statuses[1] == "offline"
    assert len(_offline_events(buddy, 1)) == 1


@pytest.mark.asyncio
async def test_remove_connection_twice_notifies_once(hub, store, live, online) -> None:
    store.befriend(1, 2)
    buddy = online(2)
    connection = await live.login(hub, 1)

    assert await hub.remove_connection(1)
    assert not await hub.remove_connection(1)
    await live.wait_closed(connection)

    assert connection.transport.closed_with[0] == CLOSE_NORMAL
    assert len(_offline_events(buddy, 1)) == 1


@pytest.mark.asyncio
async def test_silent_connection_is_dropped_by_heartbeat(store, registry, live, online) -> None:
    """A connection silent for two heartbeat intervals goes offline."""
    hub = RealtimeHub(store, registry=registry, heartbeat_interval=0.05, auth_timeout=5.0)
    store.befriend(1, 2)
    buddy = online(2)
    connection = await live.login(hub, 1)
    await live.wait_closed(connection)

    assert connection.transport.events("heartbeat")
    assert connection.transport.closed_with[0] == CLOSE_HEARTBEAT_TIMEOUT
    assert hub.registry.lookup(1) is None
    assert store.statuses[1] == "offline"
    assert len(_offline_events(buddy, 1)) == 1


@pytest.mark.asyncio
async def test_status_update_reaches_buddies(hub, store, live, online) -> None:
    store.befriend(1, 2)
    buddy = online(2)
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "status_update", "status": "busy"})
    await live.wait_until(lambda: bool(connection.transport.events("status_updated")))

    assert store.statuses[1] == "busy"
    assert buddy.transport.events("buddy_status_change")[-1]["status"] == "busy"


@pytest.mark.asyncio
async def test_typing_indicator_expires(store, registry, live, online) -> None:
    hub = RealtimeHub(store, registry=registry, typing_timeout=0.05)
    store.befriend(1, 2)
    recipient = online(2)
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "typing_start", "toUserId": 2})
    await live.wait_until(lambda: bool(recipient.transport.events("typing_stop")))

    assert recipient.transport.events("typing_start")[0]["fromUserId"] == 1
    assert connection.typing_timers == {}


@pytest.mark.asyncio
async def test_hang_up_cancels_pending_typing_timer(store, registry, live, online) -> None:
    hub = RealtimeHub(store, registry=registry, typing_timeout=0.1)
    store.befriend(1, 2)
    recipient = online(2)
    connection = await live.login(hub, 1)
    connection.transport.feed_json({"type": "typing_start", "toUserId": 2})
    await live.wait_until(lambda: bool(recipient.transport.events("typing_start")))
    assert 2 in connection.typing_timers

    connection.transport.hang_up()
    await live.wait_closed(connection)
    assert connection.typing_timers == {}

    await asyncio.sleep(0.25)
    assert recipient.transport.events("typing_stop") == []


@pytest.mark.asyncio
async def test_mark_read_frame_sends_receipt(hub, store, live) -> None:
    store.befriend(1, 2)
    sender = await live.login(hub, 1)
    reader = await live.login(hub, 2)
    sender.transport.feed_json({"type": "private_message", "toUserId": 2, "message": "read me"})
    await live.wait_until(lambda: bool(reader.transport.events("private_message")))

    reader.transport.feed_json({"type": "mark_read", "messageId": 1})
    await live.wait_until(lambda: bool(sender.transport.events("message_read")))
    assert sender.transport.events("message_read")[0]["readerId"] == 2


@pytest.mark.asyncio
async def test_connection_rate_per_ip(store, registry, live) -> None:
    hub = RealtimeHub(
        store,
        registry=registry,
        gate=SecurityGate(max_payload_bytes=1024, max_connections_per_ip=2),
    )
    await live.open(hub, ip="10.9.9.9")
    await live.open(hub, ip="10.9.9.9")
    refused = await live.open(hub, ip="10.9.9.9")
    await live.wait_closed(refused)
    assert refused.transport.closed_with == (CLOSE_POLICY_VIOLATION, "Too many connections")


@pytest.mark.asyncio
async def test_server_stats_and_shutdown(hub, live) -> None:
    first = await live.login(hub, 1)
    second = await live.login(hub, 2)

    assert await hub.broadcast_server_stats() == 2
    assert hub.stats()["connections"] == 2
    assert hub.stats()["max_payload_bytes"] == 10 * 1024
    assert first.transport.events("server_stats")[0]["connections"] == 2

    await hub.shutdown()
    await live.wait_closed(first)
    await live.wait_closed(second)
    assert second.transport.events("server_shutdown")
    assert first.transport.closed_with == (CLOSE_NORMAL, "Server shutdown")
    assert hub.registry.count() == 0
