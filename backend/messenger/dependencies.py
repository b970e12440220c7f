"""FastAPI dependency injection for database sessions, authentication and the hub."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from messenger.db.session import AsyncSessionLocal
from messenger.models.user import User
from messenger.services.auth_service import (
    ACCESS_TOKEN,
    decode_token,
    token_user_id,
    token_version,
)
from messenger.services.chat_errors import AuthError
from messenger.services.realtime_hub import RealtimeHub
from messenger.services.user_service import is_token_revoked

security = HTTPBearer()


async def get_db():
    """Yield a database session."""
    async with AsyncSessionLocal() as session:
        yield session


def get_hub(connection: HTTPConnection) -> RealtimeHub:
    """Return the realtime hub installed on the application."""
    return connection.app.state.hub


async def get_bearer_token(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> str:
    return credentials.credentials


async def get_current_user(
    token: Annotated[str, Depends(get_bearer_token)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """Validate the access token, reject revoked ones, then load the user."""
    try:
        payload = decode_token(token)
        if payload.get("token_type") != ACCESS_TOKEN:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type",
            )
        user_id = token_user_id(payload)
        version = token_version(payload)
    except AuthError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
        )

    if await is_token_revoked(db, token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )

    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if user.token_version != version:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has been revoked",
        )
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
DbSession = Annotated[AsyncSession, Depends(get_db)]
Hub = Annotated[RealtimeHub, Depends(get_hub)]
