"""
Unmute — Journal API

CRUD for the caller's journal entries plus the analysis write-back used by
the external topic analyser.  Changes that affect matching eligibility
schedule a background match recalculation; the response never waits for it.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import array
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.api.deps import get_current_user_id
from unmute.database import get_db
from unmute.models.journal import JournalEntry
from unmute.schemas.journal import (
    JournalAnalysis,
    JournalEntryCreate,
    JournalEntryPage,
    JournalEntryResponse,
    JournalEntryUpdate,
    Pagination,
)
from unmute.services.match_queue import MatchRecalculationQueue

logger = structlog.get_logger("unmute.api.journal")

router = APIRouter()


def get_optional_match_queue(request: Request) -> MatchRecalculationQueue | None:
    return getattr(request.app.state, "match_queue", None)


async def _commit_and_schedule(
    db: AsyncSession,
    queue: MatchRecalculationQueue | None,
    user_id: uuid.UUID,
    reason: str,
) -> None:
    """Commit the request's write, then enqueue a recompute.

    The worker reads through its own session, so the entry must be committed
    before the job can be picked up.
    """
    await db.commit()
    if queue is None:
        logger.warning("match_queue_unavailable", user_id=str(user_id), reason=reason)
        return
    queue.enqueue(user_id, reason=reason)


async def _get_owned_entry(
    db: AsyncSession,
    entry_id: uuid.UUID,
    user_id: uuid.UUID,
) -> JournalEntry:
    stmt = select(JournalEntry).where(
        JournalEntry.id == entry_id,
        JournalEntry.user_id == user_id,
    )
    result = await db.execute(stmt)
    entry = result.scalar_one_or_none()
    if entry is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Journal entry not found.",
        )
    return entry


# ──────────────────────────────────────────────────────────────────────────────
# POST / — Create an entry
# ──────────────────────────────────────────────────────────────────────────────

@router.post(
    "/",
    response_model=JournalEntryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a journal entry",
)
async def create_entry(
    payload: JournalEntryCreate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    queue: MatchRecalculationQueue | None = Depends(get_optional_match_queue),
) -> JournalEntry:
    """Store a new entry.  Entries shared for matching trigger a recompute
    of the author's matches."""
    log = logger.bind(user_id=str(user_id))

    entry = JournalEntry(
        user_id=user_id,
        title=payload.title,
        content=payload.content,
        emotions=payload.emotions,
        tags=payload.tags,
        is_private=payload.is_private,
        use_for_matching=payload.use_for_matching,
        visibility=payload.visibility,
    )
    db.add(entry)
    await db.flush()
    await db.refresh(entry)

    if entry.use_for_matching:
        await _commit_and_schedule(db, queue, user_id, reason="journal_created")

    log.info(
        "journal_entry_created",
        entry_id=str(entry.id),
        use_for_matching=entry.use_for_matching,
    )
    return entry


# ──────────────────────────────────────────────────────────────────────────────
# GET / — List entries
# ──────────────────────────────────────────────────────────────────────────────

def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def _entry_filters(
    user_id: uuid.UUID,
    start_date: datetime | None,
    end_date: datetime | None,
    emotions: list[str],
    tags: list[str],
    search: str | None,
) -> list:
    filters = [JournalEntry.user_id == user_id]
    if start_date is not None:
        filters.append(JournalEntry.created_at >= start_date)
    if end_date is not None:
        filters.append(JournalEntry.created_at <= end_date)
    # ?| : the JSONB array holds any of the given strings
    if emotions:
        filters.append(JournalEntry.emotions.has_any(array(emotions)))
    if tags:
        filters.append(JournalEntry.tags.has_any(array(tags)))
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            JournalEntry.title.ilike(pattern),
            JournalEntry.content.ilike(pattern),
        ))
    return filters


@router.get(
    "/",
    response_model=JournalEntryPage,
    summary="List the caller's journal entries",
)
async def list_entries(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    emotions: str | None = Query(None, description="Comma-separated; any may match"),
    tags: str | None = Query(None, description="Comma-separated; any may match"),
    search: str | None = Query(None, min_length=1),
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JournalEntryPage:
    """Newest first, filtered and paginated.  ``pagination.pages`` is
    ``ceil(total / limit)``."""
    filters = _entry_filters(
        user_id, start_date, end_date, _split_csv(emotions), _split_csv(tags), search
    )

    count_stmt = select(func.count()).select_from(JournalEntry).where(*filters)
    total = (await db.execute(count_stmt)).scalar_one()

    stmt = (
        select(JournalEntry)
        .where(*filters)
        .order_by(JournalEntry.created_at.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    result = await db.execute(stmt)
    entries = list(result.scalars().all())

    logger.info("list_entries_complete", user_id=str(user_id), total=total, page=page)
    return JournalEntryPage(
        entries=[JournalEntryResponse.model_validate(e) for e in entries],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit),
        ),
    )


# ──────────────────────────────────────────────────────────────────────────────
# GET /{entry_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.get(
    "/{entry_id}",
    response_model=JournalEntryResponse,
    summary="Get one journal entry",
)
async def get_entry(
    entry_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> JournalEntry:
    return await _get_owned_entry(db, entry_id, user_id)


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{entry_id} — Partial update
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{entry_id}",
    response_model=JournalEntryResponse,
    summary="Update a journal entry",
)
async def update_entry(
    entry_id: uuid.UUID,
    payload: JournalEntryUpdate,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    queue: MatchRecalculationQueue | None = Depends(get_optional_match_queue),
) -> JournalEntry:
    """Apply the supplied fields.  Supplying ``use_for_matching`` (either
    value) schedules a recompute of the author's matches."""
    log = logger.bind(user_id=str(user_id), entry_id=str(entry_id))

    entry = await _get_owned_entry(db, entry_id, user_id)

    changes = payload.model_dump(exclude_none=True)
    for field, value in changes.items():
        setattr(entry, field, value)
    await db.flush()
    await db.refresh(entry)

    if "use_for_matching" in changes:
        await _commit_and_schedule(db, queue, user_id, reason="journal_updated")

    log.info("journal_entry_updated", fields=sorted(changes))
    return entry


# ──────────────────────────────────────────────────────────────────────────────
# PUT /{entry_id}/analysis — Analysis write-back
# ──────────────────────────────────────────────────────────────────────────────

@router.put(
    "/{entry_id}/analysis",
    response_model=JournalEntryResponse,
    summary="Store the topic/sentiment analysis for an entry",
)
async def store_analysis(
    entry_id: uuid.UUID,
    payload: JournalAnalysis,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    queue: MatchRecalculationQueue | None = Depends(get_optional_match_queue),
) -> JournalEntry:
    """Record the analyser's output.  Once an entry shared for matching has
    topics it becomes eligible, so a recompute is scheduled."""
    entry = await _get_owned_entry(db, entry_id, user_id)

    entry.analysis = payload.model_dump()
    await db.flush()
    await db.refresh(entry)

    if entry.use_for_matching:
        await _commit_and_schedule(db, queue, user_id, reason="journal_analysed")

    logger.info(
        "journal_analysis_stored",
        entry_id=str(entry_id),
        topic_count=len(payload.key_topics),
    )
    return entry


# ──────────────────────────────────────────────────────────────────────────────
# DELETE /{entry_id}
# ──────────────────────────────────────────────────────────────────────────────

@router.delete(
    "/{entry_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a journal entry",
)
async def delete_entry(
    entry_id: uuid.UUID,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> None:
    entry = await _get_owned_entry(db, entry_id, user_id)
    await db.delete(entry)
    await db.flush()
    logger.info("journal_entry_deleted", user_id=str(user_id), entry_id=str(entry_id))
