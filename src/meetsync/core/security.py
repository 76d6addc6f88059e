"""Bearer token verification for user-facing triggers.

Tokens are issued by the external authentication provider. This service
never mints them; it only checks the HS256 signature and reads the opaque
user id from the `sub` claim.
"""

from __future__ import annotations

from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.meetsync.config import get_settings


def verify_token(token: str) -> dict:
    """Decode and validate a provider-issued JWT.

    Args:
        token: The JWT string.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, or has no subject.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    decode_kwargs: dict = {"algorithms": [settings.JWT_ALGORITHM]}
    if settings.JWT_AUDIENCE:
        decode_kwargs["audience"] = settings.JWT_AUDIENCE
    else:
        decode_kwargs["options"] = {"verify_aud": False}
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, **decode_kwargs)
    except JWTError:
        raise credentials_exception
    if not payload.get("sub"):
        raise credentials_exception
    return payload
