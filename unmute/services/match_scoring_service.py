"""
Unmute — Match scoring pipeline.

Recomputes one user's ranked match list from journal-topic overlap and an
optional embedding-similarity lookup, then replaces the persisted list:

  content_score  = |owner_topics ∩ other_topics| / |owner_topics ∪ other_topics|
  combined_score = 0.7 × content_score + 0.3 × vector_score   (vector data present)
  combined_score = content_score                               (otherwise)

Candidates are sorted by combined score, cut to the top 10 and only then
filtered to ``combined_score > 0.1``.  A candidate ranked below the cut is
never considered even when the threshold leaves fewer than 10 survivors.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import structlog

from unmute.config import get_settings

logger = structlog.get_logger("unmute.match_scoring")


@dataclass
class MatchCandidate:
    """Transient per-candidate scores for one recompute run."""

    other_user_id: uuid.UUID
    content_score: float
    vector_score: float | None
    combined_score: float


def jaccard_similarity(a: set[str], b: set[str]) -> float:
    """Intersection over union of two topic sets; 0.0 when both are empty."""
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def union_topics(topic_lists: Iterable[Iterable[str]]) -> set[str]:
    """Flatten the ``key_topics`` lists of several entries into one set."""
    topics: set[str] = set()
    for entry_topics in topic_lists:
        topics.update(t for t in entry_topics if t)
    return topics


class MatchScorer:
    """Produce and persist a ranked, capped match list for one user.

    Collaborators are injected so that the scorer can run against the SQL
    store in production and in-memory fakes in tests.

    Parameters
    ----------
    store:
        Object providing ``find_users_except(owner_id)``,
        ``find_eligible_topics(user_id)`` and
        ``replace_matches(owner_id, candidates)``.
    vector_client:
        Optional object providing ``fetch_vector(user_id)`` and
        ``query_similar(vector, top_k)``.  ``None`` disables vector blending.
    """

    def __init__(self, store: Any, vector_client: Any | None = None) -> None:
        self.store = store
        self.vector_client = vector_client

        settings = get_settings()
        self.content_weight: float = settings.CONTENT_WEIGHT   # 0.7
        self.vector_weight: float = settings.VECTOR_WEIGHT     # 0.3
        self.match_limit: int = settings.MATCH_LIMIT           # 10
        self.min_score: float = settings.MATCH_MIN_SCORE       # 0.1
        self.vector_top_k: int = settings.VECTOR_TOP_K         # 20

    # ── Public API ────────────────────────────────────────────────────────

    async def recompute_matches(
        self, owner_id: uuid.UUID
    ) -> list[MatchCandidate] | None:
        """Recompute and persist ``owner_id``'s match list.

        Returns
        -------
        list[MatchCandidate] | None
            The candidates that were persisted (possibly empty), or ``None``
            when the run was a no-op and existing records were left untouched.

        Raises
        ------
        Exception
            Any store failure while loading users or entries.  Nothing is
            written in that case.
        """
        log = logger.bind(owner_id=str(owner_id))
        log.info("recompute_matches_start")

        owner_topics = union_topics(await self.store.find_eligible_topics(owner_id))
        if not owner_topics:
            log.info("recompute_matches_skipped", reason="no_eligible_entries")
            return None

        other_user_ids = await self.store.find_users_except(owner_id)
        if not other_user_ids:
            log.info("recompute_matches_skipped", reason="no_other_users")
            return None

        content_scores: dict[uuid.UUID, float] = {}
        for other_id in other_user_ids:
            other_topics = union_topics(
                await self.store.find_eligible_topics(other_id)
            )
            if not other_topics:
                continue
            content_scores[other_id] = jaccard_similarity(owner_topics, other_topics)

        vector_scores = await self._fetch_vector_scores(owner_id)

        candidates = self._combine_scores(other_user_ids, content_scores, vector_scores)
        survivors = self._select_top(candidates)

        await self.store.replace_matches(owner_id, survivors)

        log.info(
            "recompute_matches_complete",
            candidates=len(candidates),
            persisted=len(survivors),
            scored_by_content=len(content_scores),
            vector_hits=len(vector_scores),
        )
        return survivors

    # ── Scoring helpers ──────────────────────────────────────────────────

    async def _fetch_vector_scores(self, owner_id: uuid.UUID) -> dict[str, float]:
        """Look up embedding neighbours for the owner.

        Any failure degrades to an empty map so that the run continues on
        content similarity alone.
        """
        if self.vector_client is None:
            return {}

        try:
            vector = await self.vector_client.fetch_vector(str(owner_id))
            if not vector:
                logger.info("vector_lookup_empty", owner_id=str(owner_id))
                return {}

            similar = await self.vector_client.query_similar(vector, self.vector_top_k)
        except Exception as exc:
            logger.warning(
                "vector_lookup_failed",
                owner_id=str(owner_id),
                error=str(exc),
            )
            return {}

        return {str(match.id): _clamp_unit(match.score) for match in similar}

    def _combine_scores(
        self,
        other_user_ids: list[uuid.UUID],
        content_scores: dict[uuid.UUID, float],
        vector_scores: dict[str, float],
    ) -> list[MatchCandidate]:
        """Blend content and vector scores for every other user.

        The blend applies to all candidates as soon as the owner has any
        vector neighbours at all; candidates missing from the neighbour list
        then contribute a vector score of zero.
        """
        has_vector_data = bool(vector_scores)
        candidates: list[MatchCandidate] = []

        for other_id in other_user_ids:
            content_score = content_scores.get(other_id, 0.0)
            vector_score = vector_scores.get(str(other_id))

            if has_vector_data:
                combined = (
                    self.content_weight * content_score
                    + self.vector_weight * (vector_score or 0.0)
                )
            else:
                combined = content_score

            candidates.append(MatchCandidate(
                other_user_id=other_id,
                content_score=content_score,
                vector_score=vector_score,
                combined_score=_clamp_unit(combined),
            ))

        return candidates

    def _select_top(self, candidates: list[MatchCandidate]) -> list[MatchCandidate]:
        """Sort, truncate to ``match_limit``, then apply the score threshold."""
        ranked = sorted(candidates, key=lambda c: c.combined_score, reverse=True)
        top = ranked[: self.match_limit]
        return [c for c in top if c.combined_score > self.min_score]


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


# ──────────────────────────────────────────────────────────────────────────────
# Job handler
# ──────────────────────────────────────────────────────────────────────────────

def make_recalculation_handler(
    session_factory: Callable[[], Any],
    vector_client: Any | None,
) -> Callable[[uuid.UUID], Awaitable[int | None]]:
    """Build the coroutine the recalculation queue runs for each owner.

    Each run gets its own session and a single transaction, so the upsert
    and prune of the owner's records commit together or not at all.
    """
    from unmute.services.match_store import SqlMatchStore

    async def _recalculate(owner_id: uuid.UUID) -> int | None:
        async with session_factory() as session:
            async with session.begin():
                scorer = MatchScorer(SqlMatchStore(session), vector_client)
                persisted = await scorer.recompute_matches(owner_id)
        return None if persisted is None else len(persisted)

    return _recalculate
