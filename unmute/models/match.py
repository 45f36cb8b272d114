"""
Unmute — Persisted match records.

One row per ``(owner_id, matched_user_id)``; the whole set for an owner is
rewritten by each recompute run.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unmute.database import Base


class MatchRecord(Base):
    __tablename__ = "matches"
    __table_args__ = (
        UniqueConstraint("owner_id", "matched_user_id", name="uq_match_owner_matched"),
        CheckConstraint("score >= 0 AND score <= 1", name="ck_match_score_range"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    owner_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    matched_user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    score: Mapped[float] = mapped_column(Float, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # ── Relationships ──────────────────────────────────────────────
    matched_user: Mapped["User"] = relationship(
        "User", foreign_keys=[matched_user_id], lazy="selectin"
    )

    def __repr__(self) -> str:
        return (
            f"<MatchRecord {self.owner_id} -> {self.matched_user_id} "
            f"score={self.score:.3f}>"
        )
