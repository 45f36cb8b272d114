"""
Unmute — Shared FastAPI dependencies.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.database import get_db
from unmute.services.match_queue import MatchRecalculationQueue
from unmute.services.match_store import SqlMatchStore
from unmute.services.vector_service import PineconeVectorClient
from unmute.utils.security import decode_access_token

logger = structlog.get_logger("unmute.api.deps")

_bearer = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> uuid.UUID:
    """Resolve the caller's user id from the ``Authorization: Bearer`` header."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return decode_access_token(credentials.credentials)
    except ValueError as exc:
        logger.info("auth_rejected", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


async def get_match_store(db: AsyncSession = Depends(get_db)) -> SqlMatchStore:
    return SqlMatchStore(db)


def get_match_queue(request: Request) -> MatchRecalculationQueue:
    """Return the recalculation queue created in the application lifespan."""
    queue = getattr(request.app.state, "match_queue", None)
    if queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Match recalculation is not available.",
        )
    return queue


def get_vector_client(request: Request) -> PineconeVectorClient:
    """Return the vector client built in the lifespan; 503 when unconfigured."""
    client = getattr(request.app.state, "vector_client", None)
    if client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vector similarity is not configured.",
        )
    return client
