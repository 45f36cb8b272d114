"""
Unmute — Buddy Suggestions API

Raw embedding neighbours for the caller, straight from the vector index.
Unlike ``/match`` nothing here is scored against journal topics or persisted.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from unmute.api.deps import get_current_user_id, get_vector_client
from unmute.config import get_settings
from unmute.schemas.match import BuddySuggestion
from unmute.services.vector_service import PineconeVectorClient

logger = structlog.get_logger("unmute.api.buddy")

router = APIRouter()


# ──────────────────────────────────────────────────────────────────────────────
# GET /suggestions — Top-K similar users
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/suggestions",
    response_model=list[BuddySuggestion],
    summary="Users whose embeddings are closest to the caller's",
)
async def buddy_suggestions(
    user_id: uuid.UUID = Depends(get_current_user_id),
    vectors: PineconeVectorClient = Depends(get_vector_client),
) -> list[BuddySuggestion]:
    log = logger.bind(user_id=str(user_id))
    own_id = str(user_id)

    try:
        vector = await vectors.fetch_vector(own_id)
        if not vector:
            log.info("buddy_suggestions_no_vector")
            return []
        similar = await vectors.query_similar(vector, get_settings().VECTOR_TOP_K)
    except Exception as exc:
        log.error("buddy_suggestions_failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vector service unavailable.",
        ) from exc

    suggestions = [
        BuddySuggestion(user_id=m.id, score=m.score)
        for m in similar
        if m.id != own_id
    ]
    log.info("buddy_suggestions_complete", count=len(suggestions))
    return suggestions
