"""
Bearer token handling for the identity collaborator.
Tokens are issued by the auth service; this backend only decodes them into a Principal.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from fastapi import HTTPException, status

from .config import Settings
from ..models.auth import Principal, Role
from ..utils.logger import get_logger

logger = get_logger("security")

ACCESS_TOKEN_EXPIRE_MINUTES = 60


def create_access_token(
    principal: Principal, settings: Settings, expires_delta: Optional[timedelta] = None
) -> str:
    """
    Create a JWT access token for a principal.

    Used by the developer scripts and the test-suite; production tokens come
    from the auth service sharing ``SECRET_KEY``.

    Args:
        principal: Identity to encode
        settings: Settings holding the signing key and algorithm
        expires_delta: Optional custom expiration time

    Returns:
        The encoded JWT token
    """
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {
        "sub": principal.user_id,
        "role": principal.role.value,
        "college_id": principal.college_id,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str, settings: Settings) -> Principal:
    """
    Verify and decode a JWT access token.

    Raises:
        HTTPException: If the token is invalid, expired or malformed
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        logger.warning(f"Token verification failed: {e}")
        raise credentials_exception

    if payload.get("type", "access") != "access":
        raise credentials_exception

    user_id = payload.get("sub")
    role = payload.get("role")
    if user_id is None or role not in Role._value2member_map_:
        raise credentials_exception

    return Principal(user_id=user_id, role=Role(role), college_id=payload.get("college_id"))
