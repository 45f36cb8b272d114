"""Bearer-token helpers.  The ``sub`` claim carries the user's UUID."""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from unmute.config import get_settings


def create_access_token(user_id: uuid.UUID, expires_minutes: int | None = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or settings.ACCESS_TOKEN_EXPIRE_MINUTES
    )
    claims: dict[str, Any] = {
        "sub": str(user_id),
        "exp": expire,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> uuid.UUID:
    """Validate ``token`` and return the user id it was issued for.

    Raises ``ValueError`` on a bad signature, an expired token or a subject
    that is not a UUID.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise ValueError("Invalid token") from exc

    subject = payload.get("sub")
    if not subject:
        raise ValueError("Token has no subject")
    try:
        return uuid.UUID(str(subject))
    except ValueError as exc:
        raise ValueError("Token subject is not a valid user id") from exc
