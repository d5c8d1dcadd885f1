"""JWT access tokens identifying the calling user."""

from datetime import datetime, timedelta, timezone

from jose import jwt

from staybook.config import settings


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Create an access token whose ``sub`` claim is the user's UUID."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.jwt_access_token_expire_minutes))
    payload = {"sub": user_id, "exp": expire, "iat": now, "type": "access"}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Decode and verify a JWT.

    Raises:
        jose.JWTError: If the token is invalid, expired, or malformed.
    """
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
