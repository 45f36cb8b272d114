from pydantic import BaseModel
from uuid import UUID
from datetime import datetime
from typing import Optional

class MatchedUser(BaseModel):
    id: UUID
    username: str
    bio: str = ""
    interests: list[str] = []

    model_config = {"from_attributes": True}

class MatchListItem(BaseModel):
    matched_user_id: UUID
    score: float
    last_updated: datetime
    matched_user: Optional[MatchedUser] = None

    model_config = {"from_attributes": True}

class RecalculateResponse(BaseModel):
    status: str = "started"
    message: str = "Match recalculation started"
    queued: bool

class RecalculationStatusResponse(BaseModel):
    state: str  # queued/running/succeeded/failed
    reason: str
    attempts: int
    enqueued_at: datetime
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    matches_written: Optional[int] = None
    last_error: Optional[str] = None

class BuddySuggestion(BaseModel):
    user_id: str
    score: float
