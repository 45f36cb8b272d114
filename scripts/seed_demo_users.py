"""Seed demo users with analysed journal entries and compute their matches."""
import asyncio
import sys
sys.path.insert(0, ".")

from sqlalchemy import select
from unmute.database import async_session_factory
from unmute.models.journal import JournalEntry
from unmute.models.user import User
from unmute.services.match_scoring_service import make_recalculation_handler
from unmute.services.vector_service import build_vector_client
from unmute.utils.security import create_access_token


DEMO_USERS = [
    {
        "phone": "+15550000001",
        "username": "quiet_river",
        "bio": "Night owl, trying to sleep more.",
        "interests": ["music", "running"],
        "topics": [["sleep", "anxiety", "work"], ["running", "sleep"]],
    },
    {
        "phone": "+15550000002",
        "username": "paper_lantern",
        "bio": "First year away from home.",
        "interests": ["art"],
        "topics": [["homesickness", "loneliness"], ["anxiety", "exams"]],
    },
    {
        "phone": "+15550000003",
        "username": "slow_tide",
        "bio": "Learning to say no at work.",
        "interests": ["cooking", "hiking"],
        "topics": [["work", "burnout", "sleep"], ["anxiety"]],
    },
    {
        "phone": "+15550000004",
        "username": "open_window",
        "bio": "",
        "interests": [],
        "topics": [["grief", "family"]],
    },
]


async def seed():
    async with async_session_factory() as session:
        users: list[User] = []
        for demo in DEMO_USERS:
            existing = await session.execute(
                select(User).where(User.phone == demo["phone"])
            )
            user = existing.scalar_one_or_none()
            if user is not None:
                print(f"  User {demo['username']} already exists, skipping.")
                users.append(user)
                continue

            user = User(
                phone=demo["phone"],
                username=demo["username"],
                bio=demo["bio"],
                interests=demo["interests"],
            )
            session.add(user)
            await session.flush()
            for i, topics in enumerate(demo["topics"], start=1):
                session.add(JournalEntry(
                    user_id=user.id,
                    title=f"Entry {i}",
                    content="Seeded entry.",
                    emotions=[],
                    tags=[],
                    use_for_matching=True,
                    analysis={"sentiment": "Neutral", "emotions": [], "key_topics": topics},
                ))
            users.append(user)
            print(f"  Seeded user {demo['username']} with {len(demo['topics'])} entries")
        await session.commit()

    recalculate = make_recalculation_handler(async_session_factory, build_vector_client())
    for user in users:
        written = await recalculate(user.id)
        print(f"  {user.username}: {written or 0} matches")
        print(f"    token: {create_access_token(user.id)}")
    print("Done seeding demo users.")


if __name__ == "__main__":
    asyncio.run(seed())
