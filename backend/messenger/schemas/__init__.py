from messenger.schemas.user import (
    UserCreate,
    UserLogin,
    UserProfile,
    UserProfileUpdate,
    ChangePassword,
    TokenResponse,
    RegistrationPending,
    VerifyEmailRequest,
    StatusUpdate,
    UserSearchResult,
    PublicProfile,
    BlockedUser,
)
from messenger.schemas.buddy import (
    BuddyRequestCreate,
    BuddyRequestOut,
    BuddyOut,
    BuddyUpdate,
)
from messenger.schemas.message import (
    PrivateMessageIn,
    MessageOut,
    ConversationOut,
    UnreadCountOut,
    SentMessageOut,
)

__all__ = [
    "UserCreate",
    "UserLogin",
    "UserProfile",
    "UserProfileUpdate",
    "ChangePassword",
    "TokenResponse",
    "RegistrationPending",
    "VerifyEmailRequest",
    "StatusUpdate",
    "UserSearchResult",
    "PublicProfile",
    "BlockedUser",
    "BuddyRequestCreate",
    "BuddyRequestOut",
    "BuddyOut",
    "BuddyUpdate",
    "PrivateMessageIn",
    "MessageOut",
    "ConversationOut",
    "UnreadCountOut",
    "SentMessageOut",
]
