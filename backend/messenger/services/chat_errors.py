"""Error taxonomy shared by the realtime core and the REST layer.

Every error carries a user-facing ``message``. Validation and relationship
errors are reported back to the originating connection and leave it open;
authentication errors carry the WebSocket close code used to refuse the
connection.
"""

# WebSocket close codes.
CLOSE_NORMAL = 1000
CLOSE_POLICY_VIOLATION = 1008
CLOSE_SUPERSEDED = 4000
CLOSE_AUTH_FAILED = 4001
CLOSE_TOO_MANY_CONNECTIONS = 4002
CLOSE_HEARTBEAT_TIMEOUT = 4004


class ChatError(Exception):
    """Base class for messaging errors with a user-facing message."""

    default_message = "Request failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


# ── Authentication ─────────────────────────────────────────────────


class AuthError(ChatError):
    default_message = "Authentication failed"
    close_code = CLOSE_AUTH_FAILED


class TokenExpired(AuthError):
    default_message = "Token has expired"


class TokenInvalid(AuthError):
    default_message = "Invalid token"


class WrongTokenClass(AuthError):
    default_message = "Invalid token type"


class TooManyConnections(AuthError):
    default_message = "Too many connections for this user"
    close_code = CLOSE_TOO_MANY_CONNECTIONS


# ── Validation ─────────────────────────────────────────────────────


class MessageValidationError(ChatError):
    default_message = "Invalid message"


class PayloadTooLarge(MessageValidationError):
    default_message = "Message too large"


class MalformedMessage(MessageValidationError):
    default_message = "Invalid message format"


class RateLimited(MessageValidationError):
    default_message = "Rate limit exceeded"


class InvalidContent(MessageValidationError):
    default_message = "Message contains invalid content"


# ── Relationships ──────────────────────────────────────────────────


class RelationshipError(ChatError):
    default_message = "Relationship check failed"


class NotBuddies(RelationshipError):
    default_message = "You can only message your buddies"


class Blocked(RelationshipError):
    default_message = "Cannot send message to this user"


# ── Infrastructure ─────────────────────────────────────────────────


class PersistenceError(ChatError):
    default_message = "Failed to send message"


class TransportError(ChatError):
    default_message = "Connection closed"
