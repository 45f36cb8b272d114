"""
Unmute — SQL-backed store for the match scoring pipeline.

Reads users and matching-eligible journal topics, and replaces an owner's
match records with an upsert followed by a prune of stale rows.  Both write
statements run inside the caller's transaction, so readers see either the
previous list or the new one and never an empty window.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Sequence

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from unmute.models.journal import JournalEntry
from unmute.models.match import MatchRecord
from unmute.models.user import User
from unmute.services.match_scoring_service import MatchCandidate

logger = structlog.get_logger("unmute.match_store")


class SqlMatchStore:
    """Match-scoring persistence on top of one ``AsyncSession``."""

    def __init__(self, db_session: AsyncSession) -> None:
        self.db = db_session

    # ── Scorer inputs ────────────────────────────────────────────────────

    async def find_users_except(self, owner_id: uuid.UUID) -> list[uuid.UUID]:
        stmt = select(User.id).where(User.id != owner_id).order_by(User.created_at)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def find_eligible_topics(self, user_id: uuid.UUID) -> list[list[str]]:
        """Return the ``key_topics`` list of every matching-eligible entry.

        Eligible means ``use_for_matching`` is set and the analysis carries
        a ``key_topics`` key.
        """
        stmt = select(JournalEntry.analysis).where(
            JournalEntry.user_id == user_id,
            JournalEntry.use_for_matching.is_(True),
            JournalEntry.analysis.has_key("key_topics"),
        )
        result = await self.db.execute(stmt)
        return [
            list(analysis.get("key_topics") or [])
            for analysis in result.scalars().all()
            if analysis
        ]

    # ── Scorer output ────────────────────────────────────────────────────

    async def replace_matches(
        self,
        owner_id: uuid.UUID,
        candidates: Sequence[MatchCandidate],
    ) -> None:
        """Make ``candidates`` the complete match set for ``owner_id``.

        Existing pairs are updated in place, new pairs inserted and every
        other row for the owner deleted.
        """
        now = datetime.now(timezone.utc)
        keep_ids = [c.other_user_id for c in candidates]

        if candidates:
            stmt = pg_insert(MatchRecord).values([
                {
                    "id": uuid.uuid4(),
                    "owner_id": owner_id,
                    "matched_user_id": c.other_user_id,
                    "score": c.combined_score,
                    "last_updated": now,
                }
                for c in candidates
            ])
            stmt = stmt.on_conflict_do_update(
                constraint="uq_match_owner_matched",
                set_={
                    "score": stmt.excluded.score,
                    "last_updated": stmt.excluded.last_updated,
                },
            )
            await self.db.execute(stmt)

        prune = delete(MatchRecord).where(MatchRecord.owner_id == owner_id)
        if keep_ids:
            prune = prune.where(MatchRecord.matched_user_id.not_in(keep_ids))
        await self.db.execute(prune)
        await self.db.flush()

        logger.info(
            "match_records_replaced",
            owner_id=str(owner_id),
            count=len(candidates),
        )

    # ── API reads ────────────────────────────────────────────────────────

    async def list_matches(self, owner_id: uuid.UUID) -> list[MatchRecord]:
        """All records for an owner, best score first."""
        stmt = (
            select(MatchRecord)
            .where(MatchRecord.owner_id == owner_id)
            .order_by(MatchRecord.score.desc())
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def get_match(
        self,
        owner_id: uuid.UUID,
        matched_user_id: uuid.UUID,
    ) -> MatchRecord | None:
        stmt = select(MatchRecord).where(
            MatchRecord.owner_id == owner_id,
            MatchRecord.matched_user_id == matched_user_id,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()
