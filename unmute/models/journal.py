"""
Unmute — Journal entry model.

``analysis`` is written by the external analysis worker and has the shape
``{"sentiment": str, "emotions": [str], "key_topics": [str]}``.  Only entries
with ``use_for_matching`` set and a ``key_topics`` key take part in matching.
"""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.dialects.postgresql import JSONB, UUID as PgUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from unmute.database import Base


class JournalEntry(Base):
    __tablename__ = "journal_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PgUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    emotions: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    tags: Mapped[list | None] = mapped_column(JSONB, nullable=True)
    is_private: Mapped[bool] = mapped_column(
        Boolean, default=True, server_default="true", nullable=False
    )
    use_for_matching: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default="false", nullable=False
    )
    visibility: Mapped[str] = mapped_column(
        String, default="private", server_default="private", nullable=False,
        comment="private / public / friends",
    )
    analysis: Mapped[dict | None] = mapped_column(
        JSONB, nullable=True, comment="sentiment, emotions, key_topics"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), onupdate=func.now(), nullable=True
    )

    # ── Relationships ──────────────────────────────────────────────
    user: Mapped["User"] = relationship("User", back_populates="journal_entries")

    @property
    def key_topics(self) -> list[str]:
        if not self.analysis:
            return []
        return list(self.analysis.get("key_topics") or [])

    def __repr__(self) -> str:
        return (
            f"<JournalEntry {self.id} user={self.user_id} "
            f"matching={self.use_for_matching}>"
        )
