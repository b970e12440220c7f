"""Authentication endpoints: register, email verification, login, refresh, logout, profile."""

import logging
from datetime import datetime, timezone
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query, Response, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from messenger.config import settings
from messenger.dependencies import CurrentUser, DbSession, Hub, get_bearer_token
from messenger.models.user import User
from messenger.schemas.user import (
    UserCreate,
    UserLogin,
    UserProfile,
    UserProfileUpdate,
    ChangePassword,
    TokenResponse,
    RegistrationPending,
    VerifyEmailRequest,
)
from messenger.services.audit_service import log_user_action
from messenger.services.auth_service import (
    EMAIL_VERIFICATION_TOKEN,
    REFRESH_TOKEN,
    hash_password,
    verify_password,
    create_access_token,
    create_refresh_token,
    create_email_verification_token,
    decode_token,
    token_expiry,
    token_user_id,
    token_version,
)
from messenger.services.chat_errors import AuthError
from messenger.services.user_service import end_all_sessions, mark_email_verified, revoke_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _utc_now_naive() -> datetime:
    """Return a naive UTC datetime without deprecated utcnow()."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def request_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    """Set the refresh token as an httpOnly cookie."""
    max_age_seconds = settings.jwt_refresh_token_expire_days * 24 * 60 * 60
    response.set_cookie(
        key="refresh_token",
        value=refresh_token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/api/auth",
        max_age=max_age_seconds,
    )


def _issue_tokens(response: Response, user: User) -> TokenResponse:
    set_refresh_cookie(response, create_refresh_token(user.id, user.email, user.token_version))
    return TokenResponse(
        access_token=create_access_token(user.id, user.email, user.token_version)
    )


def send_verification_link(user: User) -> str:
    """Hand the verification link to the delivery channel and return its token.

    Outbound email is not part of this service; the link is written to the
    ``messenger`` log for whatever relay the operator attaches to it.
    """
    token = create_email_verification_token(user.id, user.email)
    logger.info(
        "Email verification link for user %s: /api/auth/verify-email?token=%s",
        user.id,
        token,
    )
    return token


def _invalid_verification(
    detail: str = "Invalid or expired verification token",
    code: str = "INVALID_TOKEN",
) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": detail, "code": code},
    )


@router.post("/register", response_model=TokenResponse | RegistrationPending)
async def register(
    user_data: UserCreate,
    request: Request,
    response: Response,
    db: DbSession,
):
    """Register a new user; return tokens, or a pending notice when verification is required."""
    normalised_email = user_data.email.lower()
    result = await db.execute(select(User).where(User.email == normalised_email))
    if result.scalar_one_or_none():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        email=normalised_email,
        display_name=user_data.display_name.strip(),
        password_hash=hash_password(user_data.password),
        email_verified=not settings.require_email_verification,
        status="offline",
    )
    db.add(user)
    await db.flush()
    await log_user_action(db, user.id, "register", request_ip(request))
    await db.commit()
    await db.refresh(user)
    logger.info("Registered user %s", user.id)

    if not user.email_verified:
        send_verification_link(user)
        return RegistrationPending(
            message="User registered successfully. Please check your email for verification.",
            user_id=user.id,
            email=user.email,
        )
    return _issue_tokens(response, user)


async def _verify_email(token: str, request: Request, db: AsyncSession) -> dict:
    try:
        payload = decode_token(token)
        user_id = token_user_id(payload)
    except AuthError:
        raise _invalid_verification()
    if payload.get("token_type") != EMAIL_VERIFICATION_TOKEN:
        raise _invalid_verification()

    user = await db.get(User, user_id)
    if user is None or user.email != payload.get("email"):
        raise _invalid_verification()
    if not await mark_email_verified(db, user):
        raise _invalid_verification("Email already verified", "ALREADY_VERIFIED")

    await log_user_action(db, user.id, "verify_email", request_ip(request))
    await db.commit()
    logger.info("Email verified for user %s", user.id)
    return {"message": "Email verified successfully"}


@router.get("/verify-email")
async def verify_email_link(
    token: Annotated[str, Query(min_length=1)],
    request: Request,
    db: DbSession,
):
    """Verify an email address from the emailed link."""
    return await _verify_email(token, request, db)


@router.post("/verify-email")
async def verify_email(
    body: VerifyEmailRequest,
    request: Request,
    db: DbSession,
):
    """Verify an email address from a token posted by the client."""
    return await _verify_email(body.token, request, db)


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    request: Request,
    response: Response,
    db: DbSession,
):
    """Authenticate user and return tokens."""
    result = await db.execute(
        select(User).where(User.email == credentials.email.lower())
    )
    user = result.scalar_one_or_none()
    if not user or not verify_password(credentials.password, user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    if settings.require_email_verification and not user.email_verified:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Please verify your email before logging in",
        )

    user.last_login = _utc_now_naive()
    await log_user_action(db, user.id, "login", request_ip(request))
    await db.commit()

    return _issue_tokens(response, user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    request: Request,
    response: Response,
    db: DbSession,
):
    """Refresh access token using the refresh token cookie."""
    refresh_token = request.cookies.get("refresh_token")
    if not refresh_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token not found",
        )

    try:
        payload = decode_token(refresh_token)
        if payload.get("token_type") != REFRESH_TOKEN:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token type",
            )
        user_id = token_user_id(payload)
        version = token_version(payload)
    except AuthError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired refresh token",
        )

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )
    if user.token_version != version:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Refresh token has been revoked",
        )

    return _issue_tokens(response, user)


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
    token: Annotated[str, Depends(get_bearer_token)],
):
    """Revoke the access token, clear the refresh cookie and drop the live socket."""
    await revoke_token(db, token, token_expiry(decode_token(token)))
    await log_user_action(db, current_user.id, "logout", request_ip(request))
    await db.commit()

    response.delete_cookie(key="refresh_token", path="/api/auth")
    await hub.remove_connection(current_user.id)
    return {"message": "Logged out successfully"}


@router.post("/logout-all")
async def logout_all(
    request: Request,
    response: Response,
    current_user: CurrentUser,
    db: DbSession,
    hub: Hub,
):
    """Invalidate every token the user holds and drop the live socket."""
    await end_all_sessions(db, current_user)
    await log_user_action(db, current_user.id, "logout_all", request_ip(request))
    await db.commit()

    response.delete_cookie(key="refresh_token", path="/api/auth")
    await hub.remove_connection(current_user.id)
    return {"message": "Logged out from all devices"}


@router.get("/me", response_model=UserProfile)
async def get_me(current_user: CurrentUser):
    """Get the current user's profile."""
    return current_user


@router.put("/me", response_model=UserProfile)
async def update_me(
    update_data: UserProfileUpdate,
    current_user: CurrentUser,
    db: DbSession,
):
    """Update the current user's profile (display name, avatar)."""
    if update_data.display_name is not None:
        current_user.display_name = update_data.display_name.strip()
    if update_data.avatar_url is not None:
        current_user.avatar_url = update_data.avatar_url or None

    await db.commit()
    await db.refresh(current_user)
    return current_user


@router.put("/me/password")
async def change_password(
    password_data: ChangePassword,
    current_user: CurrentUser,
    db: DbSession,
):
    """Change the current user's password."""
    if not verify_password(password_data.current_password, current_user.password_hash):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    current_user.password_hash = hash_password(password_data.new_password)
    await db.commit()
    return {"message": "Password updated successfully"}
