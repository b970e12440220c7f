"""Session authenticator tests."""

import pytest

from messenger.services.auth_service import create_access_token, create_refresh_token
from messenger.services.chat_errors import (
    CLOSE_SUPERSEDED,
    TokenInvalid,
    TooManyConnections,
    WrongTokenClass,
)
from messenger.services.presence_service import PresenceNotifier
from messenger.services.session_auth import SessionAuthenticator


@pytest.fixture
def authenticator(store, registry) -> SessionAuthenticator:
    return SessionAuthenticator(store, registry, PresenceNotifier(store, registry))


def _token(user_id: int) -> str:
    return create_access_token(user_id, f"user{user_id}@example.com")


@pytest.mark.asyncio
async def test_success_registers_and_announces_online(store, registry, authenticator, pending, online) -> None:
    store.befriend(1, 2)
    buddy = online(2)
    connection = pending()

    identity = await authenticator.authenticate(connection, _token(1))

    assert identity.user_id == 1
    assert connection.is_authenticated
    assert registry.lookup(1) is connection
    assert connection.transport.events("auth_success") == [
        {"type": "auth_success", "user": {"id": 1, "email": "user1@example.com"}}
    ]
    assert store.statuses[1] == "online"
    assert buddy.transport.events("buddy_status_change")[0]["status"] == "online"


@pytest.mark.asyncio
async def test_refresh_token_is_refused(authenticator, pending, registry) -> None:
    connection = pending()
    with pytest.raises(WrongTokenClass):
        await authenticator.authenticate(connection, create_refresh_token(1, "a@example.com"))
    assert registry.lookup(1) is None


@pytest.mark.asyncio
async def test_revoked_token_is_refused(store, authenticator, pending) -> None:
    token = _token(1)
    store.revoked.add(token)
    with pytest.raises(TokenInvalid):
        await authenticator.authenticate(pending(), token)


@pytest.mark.asyncio
async def test_revocation_lookup_failure_refuses(store, authenticator, pending) -> None:
    store.failing.add("is_token_revoked")
    with pytest.raises(TokenInvalid):
        await authenticator.authenticate(pending(), _token(1))


@pytest.mark.asyncio
async def test_new_session_supersedes_old_one(registry, authenticator, pending) -> None:
    first, second = pending(), pending()
    await authenticator.authenticate(first, _token(1))
    await authenticator.authenticate(second, _token(1))

    assert registry.lookup(1) is second
    assert first.close_code == CLOSE_SUPERSEDED
    assert registry.session_count(1) == 2


@pytest.mark.asyncio
async def test_connection_ceiling(registry, authenticator, pending) -> None:
    for _ in range(3):
        await authenticator.authenticate(pending(), _token(1))
    with pytest.raises(TooManyConnections):
        await authenticator.authenticate(pending(), _token(1))


@pytest.mark.asyncio
async def test_status_write_failure_does_not_fail_login(store, authenticator, pending, registry) -> None:
    store.failing.add("set_status")
    connection = pending()
    await authenticator.authenticate(connection, _token(1))
    assert registry.lookup(1) is connection


@pytest.mark.asyncio
async def test_token_from_before_logout_everywhere_is_refused(store, authenticator, pending, registry) -> None:
    store.token_versions[1] = 1
    with pytest.raises(TokenInvalid):
        await authenticator.authenticate(pending(), _token(1))
    assert registry.lookup(1) is None

    connection = pending()
    await authenticator.authenticate(
        connection, create_access_token(1, "user1@example.com", version=1)
    )
    assert registry.lookup(1) is connection
