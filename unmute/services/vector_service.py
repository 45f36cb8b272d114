"""
Unmute — Vector similarity client.

Thin async wrapper around a Pinecone index holding one embedding per user
(namespace ``users``).  The blocking SDK calls run in a worker thread, are
bounded by ``VECTOR_TIMEOUT_SECONDS`` and retried with exponential backoff.

The client is constructed explicitly and handed to ``MatchScorer``; the
Pinecone connection is opened lazily on first use and kept on the instance.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Callable

import structlog
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential

from unmute.config import Settings, get_settings

logger = structlog.get_logger("unmute.vector_service")


@dataclass(frozen=True)
class VectorMatch:
    """One neighbour returned by a similarity query."""

    id: str
    score: float


class PineconeVectorClient:
    """Fetch user embeddings and query nearest neighbours in Pinecone."""

    def __init__(
        self,
        api_key: str,
        index_name: str = "unmute-users",
        namespace: str = "users",
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        retry_wait_seconds: float = 0.5,
        index_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.api_key = api_key
        self.index_name = index_name
        self.namespace = namespace
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.retry_wait_seconds = retry_wait_seconds
        self._index_factory = index_factory or self._open_index
        self._index: Any | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "PineconeVectorClient":
        return cls(
            api_key=settings.PINECONE_API_KEY,
            index_name=settings.PINECONE_INDEX_NAME,
            namespace=settings.PINECONE_NAMESPACE,
            timeout_seconds=settings.VECTOR_TIMEOUT_SECONDS,
            max_attempts=settings.VECTOR_MAX_ATTEMPTS,
        )

    # ── Public API ────────────────────────────────────────────────────────

    async def fetch_vector(self, user_id: str) -> list[float]:
        """Return the stored embedding for ``user_id``, or ``[]`` if none."""
        response = await self._call("fetch", ids=[user_id], namespace=self.namespace)

        vectors = getattr(response, "vectors", None) or {}
        record = vectors.get(user_id)
        if record is None:
            return []
        return list(getattr(record, "values", None) or [])

    async def query_similar(self, vector: list[float], top_k: int) -> list[VectorMatch]:
        """Return up to ``top_k`` user ids ranked by similarity to ``vector``."""
        response = await self._call(
            "query",
            vector=vector,
            top_k=top_k,
            namespace=self.namespace,
            include_values=False,
        )
        return [
            VectorMatch(id=str(m.id), score=float(m.score))
            for m in (getattr(response, "matches", None) or [])
        ]

    # ── Internals ────────────────────────────────────────────────────────

    def _open_index(self) -> Any:
        from pinecone import Pinecone

        client = Pinecone(api_key=self.api_key)
        logger.info("pinecone_index_opened", index=self.index_name)
        return client.Index(self.index_name)

    def _get_index(self) -> Any:
        if self._index is None:
            self._index = self._index_factory()
        return self._index

    async def _call(self, method: str, **kwargs: Any) -> Any:
        """Invoke an index method off the event loop with timeout and retry."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.retry_wait_seconds, max=10),
            reraise=True,
        ):
            with attempt:
                logger.debug(
                    "pinecone_call_attempt",
                    method=method,
                    attempt_number=attempt.retry_state.attempt_number,
                )
                index = self._get_index()
                return await asyncio.wait_for(
                    asyncio.to_thread(getattr(index, method), **kwargs),
                    timeout=self.timeout_seconds,
                )


def build_vector_client(settings: Settings | None = None) -> PineconeVectorClient | None:
    """Return a configured client, or ``None`` when no API key is set."""
    settings = settings or get_settings()
    if not settings.vector_enabled:
        logger.info("vector_client_disabled", reason="PINECONE_API_KEY not configured")
        return None
    return PineconeVectorClient.from_settings(settings)
