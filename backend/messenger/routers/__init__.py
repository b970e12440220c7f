from messenger.routers.auth import router as auth_router
from messenger.routers.buddies import router as buddies_router
from messenger.routers.users import router as users_router
from messenger.routers.messages import router as messages_router
from messenger.routers.ws import router as ws_router

__all__ = [
    "auth_router",
    "buddies_router",
    "users_router",
    "messages_router",
    "ws_router",
]
