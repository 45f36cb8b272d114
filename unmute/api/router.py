"""
Unmute — Main API Router

Aggregates all sub-routers under a single prefix so that ``unmute.main``
can mount the entire API surface with one ``include_router`` call.
"""

from fastapi import APIRouter

from unmute.api import buddy, journal, matching

router = APIRouter()

router.include_router(journal.router, prefix="/journal", tags=["Journal"])
router.include_router(matching.router, prefix="/match", tags=["Matching"])
router.include_router(buddy.router, prefix="/buddy", tags=["Buddy"])
