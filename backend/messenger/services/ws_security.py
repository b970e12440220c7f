"""Admission control for WebSocket traffic.

Every inbound frame passes these checks before it reaches a handler:
frame size, structure, per (ip, type) rate and, for chat text, content
safety. New connections are additionally rate limited per IP.
"""

import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import ValidationError

from messenger.config import settings
from messenger.schemas.ws import InboundFrame, inbound_frame_adapter
from messenger.services.rate_limiter import SlidingWindowCounter

logger = logging.getLogger(__name__)

CONNECTION_WINDOW_SECONDS = 60.0
SWEEP_MAX_AGE_SECONDS = 60.0 * 60.0


@dataclass(frozen=True)
class MessageRate:
    limit: int
    window_seconds: float


DEFAULT_MESSAGE_RATE = MessageRate(limit=60, window_seconds=60.0)
MESSAGE_RATES: dict[str, MessageRate] = {
    "private_message": MessageRate(limit=60, window_seconds=60.0),
    "typing_start": MessageRate(limit=10, window_seconds=10.0),
    "typing_stop": MessageRate(limit=10, window_seconds=10.0),
    "authenticate": MessageRate(limit=5, window_seconds=30.0),
}

DANGEROUS_PATTERNS = (
    re.compile(r"<script", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+=", re.IGNORECASE),
    re.compile(r"data:text/html", re.IGNORECASE),
    re.compile(r"vbscript:", re.IGNORECASE),
    re.compile(r"expression\(", re.IGNORECASE),
    re.compile(r"url\(javascript:", re.IGNORECASE),
)
SPECIAL_CHARACTERS = frozenset("<>'\"`{}[]();")
MAX_SPECIAL_CHARACTER_RATIO = 0.3

_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_UNESCAPES = {entity: char for char, entity in _ESCAPES.items()}
_OWN_ENTITY = re.compile("|".join(re.escape(entity) for entity in _UNESCAPES))


def message_rate_for(message_type: str) -> MessageRate:
    return MESSAGE_RATES.get(message_type, DEFAULT_MESSAGE_RATE)


def validate_content(content: object) -> bool:
    """Return True if chat text is free of markup/script patterns."""
    if not isinstance(content, str):
        return False
    if not content.strip():
        return False

    for pattern in DANGEROUS_PATTERNS:
        if pattern.search(content):
            return False

    special = sum(1 for char in content if char in SPECIAL_CHARACTERS)
    return special / len(content) <= MAX_SPECIAL_CHARACTER_RATIO


def sanitize(content: object) -> str:
    """HTML-escape chat text for storage and delivery.

    Only the entities this function itself emits are decoded before
    escaping, so the escaped form is stable under re-sanitization while
    any other entity-like text (``&copy=2``, ``&not``) is kept as typed.
    """
    if not isinstance(content, str):
        return ""
    decoded = _OWN_ENTITY.sub(lambda match: _UNESCAPES[match.group(0)], content)
    return "".join(_ESCAPES.get(char, char) for char in decoded).strip()


class SecurityGate:
    """Frame size, structure, content and rate checks for WebSocket traffic."""

    def __init__(
        self,
        *,
        max_payload_bytes: int | None = None,
        max_connections_per_ip: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_payload_bytes = (
            max_payload_bytes
            if max_payload_bytes is not None
            else settings.ws_max_payload_bytes
        )
        self.max_connections_per_ip = (
            max_connections_per_ip
            if max_connections_per_ip is not None
            else settings.ws_max_connections_per_ip
        )
        self._connection_attempts = SlidingWindowCounter(clock)
        self._message_rates = SlidingWindowCounter(clock)

    def validate_size(self, payload: str | bytes) -> bool:
        """Return True if the raw frame fits the payload ceiling."""
        if isinstance(payload, str):
            size = len(payload.encode("utf-8"))
        else:
            size = len(payload)
        return size <= self.max_payload_bytes

    def validate_structure(self, message: object) -> InboundFrame | None:
        """Return the parsed frame, or None for an unknown type or bad shape."""
        if not isinstance(message, dict):
            return None
        if not isinstance(message.get("type"), str):
            return None
        try:
            return inbound_frame_adapter.validate_python(message)
        except ValidationError:
            return None

    def check_connection_rate(self, ip: str) -> bool:
        """Record a connection attempt; False once the IP is over its per-minute cap."""
        allowed = self._connection_attempts.hit(
            ip, self.max_connections_per_ip, CONNECTION_WINDOW_SECONDS
        )
        if not allowed:
            logger.warning("Connection rate exceeded for %s", ip)
        return allowed

    def check_message_rate(self, ip: str, message_type: str) -> bool:
        """Record a frame; False once the (ip, type) pair is over its window cap."""
        rate = message_rate_for(message_type)
        return self._message_rates.hit(
            (ip, message_type), rate.limit, rate.window_seconds
        )


    def sweep(self) -> int:
        """Drop every counter with no activity in the last hour."""
        removed = self._connection_attempts.sweep(SWEEP_MAX_AGE_SECONDS)
        removed += self._message_rates.sweep(SWEEP_MAX_AGE_SECONDS)
        if removed:
            logger.info("Swept %d idle rate limit counters", removed)
        return removed

    def stats(self) -> dict[str, int]:
        return {
            "connection_attempt_keys": len(self._connection_attempts),
            "message_rate_keys": len(self._message_rates),
            "max_payload_bytes": self.max_payload_bytes,
            "max_connections_per_ip": self.max_connections_per_ip,
        }
