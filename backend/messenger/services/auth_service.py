"""Password hashing, JWT token creation, verification and revocation keys."""

import hashlib
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import jwt, ExpiredSignatureError, JWTError

from messenger.config import settings
from messenger.services.chat_errors import TokenExpired, TokenInvalid

ALGORITHM = "HS256"
ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"
EMAIL_VERIFICATION_TOKEN = "email_verification"


def hash_password(plain: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against a hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except (ValueError, TypeError):
        # Invalid/unsupported stored hash should fail closed.
        return False


def _encode(user_id: int, email: str, token_type: str, expire: datetime, version: int = 0) -> str:
    payload = {
        "sub": str(user_id),
        "email": email,
        "token_type": token_type,
        "ver": version,
        "exp": expire,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=ALGORITHM)


def create_access_token(user_id: int, email: str, version: int = 0) -> str:
    """Create a short-lived access token for REST calls and live sessions."""
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=settings.jwt_access_token_expire_minutes
    )
    return _encode(user_id, email, ACCESS_TOKEN, expire, version)


def create_refresh_token(user_id: int, email: str, version: int = 0) -> str:
    """Create a long-lived refresh token."""
    expire = datetime.now(timezone.utc) + timedelta(
        days=settings.jwt_refresh_token_expire_days
    )
    return _encode(user_id, email, REFRESH_TOKEN, expire, version)


def create_email_verification_token(user_id: int, email: str) -> str:
    """Create a single-purpose token that confirms ownership of ``email``."""
    expire = datetime.now(timezone.utc) + timedelta(
        hours=settings.email_verification_token_expire_hours
    )
    return _encode(user_id, email, EMAIL_VERIFICATION_TOKEN, expire)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token.

    Raises ``TokenExpired`` for an expired signature and ``TokenInvalid``
    for anything else that fails signature, issuer or audience checks.
    """
    try:
        return jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[ALGORITHM],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
        )
    except ExpiredSignatureError as e:
        raise TokenExpired() from e
    except JWTError as e:
        raise TokenInvalid(f"Invalid token: {e}") from e


def token_user_id(payload: dict) -> int:
    """Return the numeric user id carried in ``sub``."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise TokenInvalid("Invalid token payload") from e


def token_version(payload: dict) -> int:
    """Return the session generation the token was minted for."""
    version = payload.get("ver", 0)
    if not isinstance(version, int):
        raise TokenInvalid("Invalid token payload")
    return version


def token_expiry(payload: dict) -> datetime:
    """Return the token expiry as a naive UTC datetime."""
    exp = payload.get("exp")
    if not isinstance(exp, (int, float)):
        raise TokenInvalid("Invalid token payload")
    return datetime.fromtimestamp(exp, tz=timezone.utc).replace(tzinfo=None)


def token_revocation_key(token: str) -> str:
    """Return the deterministic lookup key stored for a revoked token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
