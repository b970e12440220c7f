from messenger.models.user import User, Base
from messenger.models.social import Block, Buddy, BuddyRequest
from messenger.models.message import Message
from messenger.models.token import RevokedToken
from messenger.models.audit import AuditLog

__all__ = [
    "User",
    "Base",
    "Buddy",
    "BuddyRequest",
    "Block",
    "Message",
    "RevokedToken",
    "AuditLog",
]
