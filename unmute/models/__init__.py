"""
Unmute — ORM model registry.

Importing every model here ensures that Alembic (and any other tool that
inspects ``Base.metadata``) discovers all tables automatically.
"""

from unmute.models.user import User
from unmute.models.journal import JournalEntry
from unmute.models.match import MatchRecord

__all__ = [
    "User",
    "JournalEntry",
    "MatchRecord",
]
