from pydantic import BaseModel, Field
from uuid import UUID
from datetime import datetime
from typing import Literal, Optional

Visibility = Literal["private", "public", "friends"]

class JournalEntryCreate(BaseModel):
    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    emotions: list[str] = []
    tags: list[str] = []
    is_private: bool = True
    use_for_matching: bool = False
    visibility: Visibility = "private"

class JournalEntryUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1)
    content: Optional[str] = Field(None, min_length=1)
    emotions: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    is_private: Optional[bool] = None
    use_for_matching: Optional[bool] = None
    visibility: Optional[Visibility] = None

class JournalAnalysis(BaseModel):
    sentiment: Literal["Positive", "Neutral", "Negative"]
    emotions: list[str] = []
    key_topics: list[str] = []

class JournalEntryResponse(BaseModel):
    id: UUID
    user_id: UUID
    title: str
    content: str
    emotions: Optional[list[str]] = None
    tags: Optional[list[str]] = None
    is_private: bool
    use_for_matching: bool
    visibility: str
    analysis: Optional[JournalAnalysis] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

class Pagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int

class JournalEntryPage(BaseModel):
    entries: list[JournalEntryResponse]
    pagination: Pagination
