"""Security gate unit tests: size, structure, content, sanitizing and rates."""

import pytest

from messenger.schemas.ws import PingFrame, PrivateMessageFrame, TypingFrame
from messenger.services.ws_security import SecurityGate, sanitize, validate_content


class _Clock:
    def __init__(self) -> None:
        self.now = 500.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def gate() -> SecurityGate:
    return SecurityGate(max_payload_bytes=10 * 1024, max_connections_per_ip=10, clock=_Clock())


def test_validate_size_counts_encoded_bytes(gate) -> None:
    assert gate.validate_size("x" * 10240)
    assert not gate.validate_size("x" * 10241)
    assert not gate.validate_size("é" * 6000)
    assert gate.validate_size(b"{}")


def test_validate_structure_parses_known_frames(gate) -> None:
    frame = gate.validate_structure({"type": "private_message", "toUserId": 2, "message": "hi"})
    assert isinstance(frame, PrivateMessageFrame)
    assert frame.to_user_id == 2

    typing = gate.validate_structure({"type": "typing_stop", "toUserId": 5})
    assert isinstance(typing, TypingFrame)
    assert typing.type == "typing_stop"

    assert isinstance(gate.validate_structure({"type": "ping", "extra": True}), PingFrame)


@pytest.mark.parametrize(
    "message",
    [
        ["ping"],
        {"message": "no type"},
        {"type": 7},
        {"type": "video_call"},
        {"type": "private_message", "toUserId": "2", "message": "hi"},
        {"type": "private_message", "toUserId": 2},
        {"type": "private_message", "toUserId": 2, "message": "x" * 1001},
        {"type": "status_update", "status": "offline"},
        {"type": "authenticate"},
    ],
)
def test_validate_structure_rejects_bad_shapes(gate, message) -> None:
    assert gate.validate_structure(message) is None


@pytest.mark.parametrize(
    "content",
    [
        "<script>alert(1)</script>",
        "see javascript:void(0)",
        "<img src=x onerror=alert(1)>",
        "data:text/html;base64,AAAA",
        "((((((((",
        "",
        "   ",
        None,
    ],
)
def test_validate_content_rejects_unsafe_text(content) -> None:
    assert not validate_content(content)


def test_validate_content_accepts_ordinary_chat() -> None:
    assert validate_content("hello")
    assert validate_content("see you at 5 :)")
    assert validate_content("Tom & Jerry")


def test_sanitize_escapes_markup() -> None:
    assert sanitize("<b>hi</b>") == "&lt;b&gt;hi&lt;&#x2F;b&gt;"
    assert sanitize("  it's \"fine\" ") == "it&#x27;s &quot;fine&quot;"
    assert sanitize(42) == ""


@pytest.mark.parametrize(
    "text", ["hello", "<b>hi</b>", "Tom & Jerry", "a/b 'c' \"d\"", "?a=1&copy=2", "&not; &amp;"]
)
def test_sanitize_is_stable_when_repeated(text) -> None:
    once = sanitize(text)
    assert sanitize(once) == once


def test_sanitize_keeps_foreign_entities_as_typed() -> None:
    text = "see https://shop.example/?id=1&copy=2 and this&not that"
    assert sanitize(text) == (
        "see https:&#x2F;&#x2F;shop.example&#x2F;?id=1&amp;copy=2 and this&amp;not that"
    )
    assert sanitize("&eacute; &#169;") == "&amp;eacute; &amp;#169;"


def test_message_rate_limits_sixty_per_minute(gate) -> None:
    """The 61st chat message within the window is refused."""
    for _ in range(60):
        assert gate.check_message_rate("10.0.0.1", "private_message")
    assert not gate.check_message_rate("10.0.0.1", "private_message")
    assert gate.check_message_rate("10.0.0.2", "private_message")
    assert gate.check_message_rate("10.0.0.1", "ping")


def test_typing_rate_has_its_own_window(gate) -> None:
    for _ in range(10):
        assert gate.check_message_rate("10.0.0.1", "typing_start")
    assert not gate.check_message_rate("10.0.0.1", "typing_start")
    assert gate.check_message_rate("10.0.0.1", "typing_stop")


def test_connection_rate_per_ip(gate) -> None:
    for _ in range(10):
        assert gate.check_connection_rate("10.0.0.1")
    assert not gate.check_connection_rate("10.0.0.1")
    assert gate.check_connection_rate("10.0.0.9")


def test_sweep_forgets_idle_addresses() -> None:
    clock = _Clock()
    gate = SecurityGate(max_payload_bytes=1024, max_connections_per_ip=1, clock=clock)
    assert gate.check_connection_rate("10.0.0.1")
    assert not gate.check_connection_rate("10.0.0.1")
    gate.check_message_rate("10.0.0.1", "ping")

    clock.now += 3601
    assert gate.sweep() == 2
    assert gate.stats()["connection_attempt_keys"] == 0
    assert gate.check_connection_rate("10.0.0.1")
