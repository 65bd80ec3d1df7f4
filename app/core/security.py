"""Security and Authentication Utilities"""

from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt

from app.config import Settings
from app.utils.time import get_utc_now


def create_access_token(
    data: dict,
    settings: Settings,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Tokens are normally issued by the identity service; this is used by
    scripts and tests that need to call the API.

    Args:
        data: Data to encode in the token (usually {"sub": user_id})
        settings: Settings holding the signing key and algorithm
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()
    expire = get_utc_now() + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire, "type": "access"})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, settings: Settings) -> Optional[dict]:
    """
    Decode and validate a JWT token.

    Args:
        token: JWT token to decode
        settings: Settings holding the signing key and algorithm

    Returns:
        Decoded token payload or None if invalid
    """
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
