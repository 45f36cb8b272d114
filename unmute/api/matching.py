"""
Unmute — Matching API

Endpoints for reading the caller's persisted match list and scheduling a
background recomputation of it.
"""

from __future__ import annotations

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from unmute.api.deps import get_current_user_id, get_match_queue, get_match_store
from unmute.models.match import MatchRecord
from unmute.schemas.match import (
    MatchedUser,
    MatchListItem,
    RecalculateResponse,
    RecalculationStatusResponse,
)
from unmute.services.match_queue import MatchRecalculationQueue
from unmute.services.match_store import SqlMatchStore

logger = structlog.get_logger("unmute.api.matching")

router = APIRouter()


def _to_list_item(record: MatchRecord) -> MatchListItem:
    user = record.matched_user
    matched_user = None
    if user is not None:
        matched_user = MatchedUser(
            id=user.id,
            username=user.username,
            bio=user.bio or "",
            interests=list(user.interests or []),
        )
    return MatchListItem(
        matched_user_id=record.matched_user_id,
        score=record.score,
        last_updated=record.last_updated,
        matched_user=matched_user,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List the caller's matches
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/",
    response_model=list[MatchListItem],
    summary="List the caller's matches",
)
async def list_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: SqlMatchStore = Depends(get_match_store),
) -> list[MatchListItem]:
    """Return the caller's persisted matches, highest score first, each with
    a minimal profile of the matched user."""
    log = logger.bind(user_id=str(user_id))

    records = await store.list_matches(user_id)
    items = [_to_list_item(r) for r in records]

    log.info("list_matches_complete", count=len(items))
    return items


# ──────────────────────────────────────────────────────────────────────────────
# POST /recalculate — Schedule a recompute
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/recalculate",
    response_model=RecalculateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Schedule match recalculation",
)
async def recalculate_matches(
    user_id: uuid.UUID = Depends(get_current_user_id),
    queue: MatchRecalculationQueue = Depends(get_match_queue),
) -> RecalculateResponse:
    """Queue a recomputation of the caller's matches and return immediately.

    The response never reflects the outcome of the run; poll
    ``/recalculate/status`` for that.
    """
    queued = queue.enqueue(user_id, reason="api_recalculate")
    logger.info("recalculate_requested", user_id=str(user_id), queued=queued)
    return RecalculateResponse(queued=queued)


# ──────────────────────────────────────────────────────────────────────────────
# GET /recalculate/status — Latest job status
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/recalculate/status",
    response_model=RecalculationStatusResponse,
    summary="Status of the caller's latest recalculation",
)
async def recalculation_status(
    user_id: uuid.UUID = Depends(get_current_user_id),
    queue: MatchRecalculationQueue = Depends(get_match_queue),
) -> RecalculationStatusResponse:
    job = queue.status(user_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No recalculation has been scheduled.",
        )
    return RecalculationStatusResponse(
        state=job.state.value,
        reason=job.reason,
        attempts=job.attempts,
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        finished_at=job.finished_at,
        matches_written=job.matches_written,
        last_error=job.last_error,
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{matched_user_id} — One match
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{matched_user_id}",
    response_model=MatchListItem,
    summary="Get one match by the matched user's ID",
)
async def get_match(
    matched_user_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    store: SqlMatchStore = Depends(get_match_store),
) -> MatchListItem:
    log = logger.bind(user_id=str(user_id), matched_user_id=str(matched_user_id))

    record = await store.get_match(user_id, matched_user_id)
    if record is None:
        log.info("match_not_found")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Match {matched_user_id} not found.",
        )
    return _to_list_item(record)
