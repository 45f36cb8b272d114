"""API tests for the /journal endpoints and the recompute triggers they fire."""
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.dialects import postgresql

from unmute.database import get_db
from unmute.main import app
from unmute.models.journal import JournalEntry
from unmute.services.match_queue import MatchRecalculationQueue
from unmute.utils.security import create_access_token


class FakeSession:
    """Just enough of ``AsyncSession`` for the journal routes.

    ``events`` records commits in order so that tests can check what
    happened before a recompute was enqueued.
    """

    def __init__(self, lookup=None):
        self.added = []
        self.deleted = []
        self.lookup = lookup
        self.total = None
        self.statements = []
        self.events = []

    def add(self, obj):
        self.added.append(obj)

    async def flush(self):
        for obj in self.added:
            if obj.id is None:
                obj.id = uuid.uuid4()
            if obj.created_at is None:
                obj.created_at = datetime.now(timezone.utc)

    async def refresh(self, obj):
        return None

    async def commit(self):
        self.events.append("commit")

    async def delete(self, obj):
        self.deleted.append(obj)

    async def execute(self, stmt):
        self.statements.append(stmt)
        rows = [self.lookup] if self.lookup else []
        result = MagicMock()
        result.scalar_one_or_none.return_value = self.lookup
        result.scalar_one.return_value = len(rows) if self.total is None else self.total
        result.scalars.return_value.all.return_value = rows
        return result


class RecordingQueue(MatchRecalculationQueue):
    """Queue that logs each enqueue into a shared event list."""

    def __init__(self, events):
        super().__init__(AsyncMock(return_value=0))
        self.events = events

    def enqueue(self, owner_id, reason="manual"):
        self.events.append(f"enqueue:{reason}")
        return super().enqueue(owner_id, reason=reason)


def _sql(stmt):
    compiled = stmt.compile(dialect=postgresql.dialect())
    return str(compiled), compiled.params


def _entry(user_id, **overrides):
    values = dict(
        id=uuid.uuid4(),
        user_id=user_id,
        title="Tuesday",
        content="Long day at work.",
        emotions=["tired"],
        tags=[],
        is_private=True,
        use_for_matching=False,
        visibility="private",
        analysis=None,
        created_at=datetime(2025, 3, 4, tzinfo=timezone.utc),
    )
    values.update(overrides)
    return JournalEntry(**values)


@pytest.fixture
def caller_id():
    return uuid.uuid4()


@pytest.fixture
def auth_headers(caller_id):
    return {"Authorization": f"Bearer {create_access_token(caller_id)}"}


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def queue(session):
    return RecordingQueue(session.events)


@pytest.fixture
def client(session, queue):
    async def _override_db():
        yield session

    app.dependency_overrides[get_db] = _override_db
    app.state.match_queue = queue
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.match_queue = None


class TestCreateEntry:

    def test_entry_shared_for_matching_schedules_recompute(
        self, client, auth_headers, session, queue, caller_id
    ):
        response = client.post(
            "/api/v1/journal/",
            json={"title": "Hi", "content": "Felt lonely today", "use_for_matching": True},
            headers=auth_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["user_id"] == str(caller_id)
        assert body["use_for_matching"] is True
        assert body["analysis"] is None
        assert len(session.added) == 1
        assert queue.status(caller_id).reason == "journal_created"
        assert session.events == ["commit", "enqueue:journal_created"]

    def test_private_entry_does_not_schedule(self, client, auth_headers, queue, caller_id):
        response = client.post(
            "/api/v1/journal/",
            json={"title": "Hi", "content": "Just for me"},
            headers=auth_headers,
        )

        assert response.status_code == 201
        assert queue.status(caller_id) is None

    def test_empty_content_rejected(self, client, auth_headers):
        response = client.post(
            "/api/v1/journal/",
            json={"title": "Hi", "content": ""},
            headers=auth_headers,
        )
        assert response.status_code == 422

    def test_requires_auth(self, client):
        response = client.post("/api/v1/journal/", json={"title": "Hi", "content": "x"})
        assert response.status_code == 401

    def test_missing_queue_does_not_fail_the_request(self, client, auth_headers):
        app.state.match_queue = None
        response = client.post(
            "/api/v1/journal/",
            json={"title": "Hi", "content": "x", "use_for_matching": True},
            headers=auth_headers,
        )
        assert response.status_code == 201


class TestReadEntries:

    def test_get_owned_entry(self, client, auth_headers, session, caller_id):
        entry = _entry(caller_id)
        session.lookup = entry

        response = client.get(f"/api/v1/journal/{entry.id}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["title"] == "Tuesday"

    def test_unknown_entry_is_not_found(self, client, auth_headers):
        response = client.get(f"/api/v1/journal/{uuid.uuid4()}", headers=auth_headers)
        assert response.status_code == 404

    def test_list_entries_with_pagination(self, client, auth_headers, session, caller_id):
        session.lookup = _entry(caller_id)

        response = client.get("/api/v1/journal/?limit=5", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert len(body["entries"]) == 1
        assert body["entries"][0]["title"] == "Tuesday"
        assert body["pagination"] == {"total": 1, "page": 1, "limit": 5, "pages": 1}

    def test_pages_round_up_and_offset_follows_page(
        self, client, auth_headers, session, caller_id
    ):
        session.lookup = _entry(caller_id)
        session.total = 11

        response = client.get("/api/v1/journal/?page=3&limit=5", headers=auth_headers)

        assert response.json()["pagination"]["pages"] == 3
        _, params = _sql(session.statements[-1])
        assert 10 in params.values()

    def test_filters_are_applied(self, client, auth_headers, session):
        response = client.get(
            "/api/v1/journal/",
            params={
                "start_date": "2025-01-01T00:00:00Z",
                "end_date": "2025-02-01T00:00:00Z",
                "emotions": "sad, tired",
                "tags": "work",
                "search": "deadline",
            },
            headers=auth_headers,
        )

        assert response.status_code == 200
        count_sql, _ = _sql(session.statements[0])
        list_sql, params = _sql(session.statements[1])
        for sql in (count_sql, list_sql):
            assert "journal_entries.created_at >=" in sql
            assert "journal_entries.created_at <=" in sql
            assert "journal_entries.emotions ?|" in sql
            assert "journal_entries.tags ?|" in sql
            assert "ILIKE" in sql
        assert "%deadline%" in params.values()
        assert "ORDER BY journal_entries.created_at DESC" in list_sql

    def test_unfiltered_list_only_scopes_to_caller(self, client, auth_headers, session):
        client.get("/api/v1/journal/", headers=auth_headers)

        list_sql, _ = _sql(session.statements[1])
        assert "journal_entries.user_id =" in list_sql
        assert "?|" not in list_sql
        assert "ILIKE" not in list_sql

    def test_list_limit_is_bounded(self, client, auth_headers):
        response = client.get("/api/v1/journal/?limit=500", headers=auth_headers)
        assert response.status_code == 422


class TestUpdateEntry:

    def test_toggling_matching_schedules_recompute(
        self, client, auth_headers, session, queue, caller_id
    ):
        entry = _entry(caller_id)
        session.lookup = entry

        response = client.put(
            f"/api/v1/journal/{entry.id}",
            json={"use_for_matching": True},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert entry.use_for_matching is True
        assert queue.status(caller_id).reason == "journal_updated"
        assert session.events == ["commit", "enqueue:journal_updated"]

    def test_opting_out_also_schedules_recompute(
        self, client, auth_headers, session, queue, caller_id
    ):
        entry = _entry(caller_id, use_for_matching=True)
        session.lookup = entry

        client.put(
            f"/api/v1/journal/{entry.id}",
            json={"use_for_matching": False},
            headers=auth_headers,
        )

        assert queue.status(caller_id) is not None

    def test_text_edit_does_not_schedule(self, client, auth_headers, session, queue, caller_id):
        entry = _entry(caller_id, use_for_matching=True)
        session.lookup = entry

        response = client.put(
            f"/api/v1/journal/{entry.id}",
            json={"title": "Wednesday"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["title"] == "Wednesday"
        assert queue.status(caller_id) is None


class TestStoreAnalysis:

    def test_analysis_on_shared_entry_schedules_recompute(
        self, client, auth_headers, session, queue, caller_id
    ):
        entry = _entry(caller_id, use_for_matching=True)
        session.lookup = entry

        response = client.put(
            f"/api/v1/journal/{entry.id}/analysis",
            json={"sentiment": "Negative", "emotions": ["sad"], "key_topics": ["work", "sleep"]},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert entry.key_topics == ["work", "sleep"]
        assert response.json()["analysis"]["sentiment"] == "Negative"
        assert queue.status(caller_id).reason == "journal_analysed"
        assert session.events == ["commit", "enqueue:journal_analysed"]

    def test_analysis_on_private_entry_does_not_schedule(
        self, client, auth_headers, session, queue, caller_id
    ):
        entry = _entry(caller_id)
        session.lookup = entry

        client.put(
            f"/api/v1/journal/{entry.id}/analysis",
            json={"sentiment": "Neutral", "key_topics": ["food"]},
            headers=auth_headers,
        )

        assert queue.status(caller_id) is None

    def test_unknown_sentiment_rejected(self, client, auth_headers, session, caller_id):
        session.lookup = _entry(caller_id)

        response = client.put(
            f"/api/v1/journal/{session.lookup.id}/analysis",
            json={"sentiment": "Ecstatic", "key_topics": []},
            headers=auth_headers,
        )

        assert response.status_code == 422


class TestDeleteEntry:

    def test_delete_owned_entry(self, client, auth_headers, session, queue, caller_id):
        entry = _entry(caller_id, use_for_matching=True)
        session.lookup = entry

        response = client.delete(f"/api/v1/journal/{entry.id}", headers=auth_headers)

        assert response.status_code == 204
        assert session.deleted == [entry]
        assert queue.status(caller_id) is None

    def test_delete_unknown_entry(self, client, auth_headers):
        response = client.delete(f"/api/v1/journal/{uuid.uuid4()}", headers=auth_headers)
        assert response.status_code == 404


class TestTriggerOrdering:
    """A running worker must find the triggering entry already committed."""

    @pytest.mark.asyncio
    async def test_worker_runs_after_commit(self, session, auth_headers):
        seen_committed = []

        async def handler(owner_id):
            seen_committed.append("commit" in session.events)
            return 0

        async def _override_db():
            yield session

        queue = MatchRecalculationQueue(handler, retry_wait_seconds=0)
        app.dependency_overrides[get_db] = _override_db
        app.state.match_queue = queue
        await queue.start()
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
                response = await http.post(
                    "/api/v1/journal/",
                    json={"title": "Hi", "content": "x", "use_for_matching": True},
                    headers=auth_headers,
                )
            await queue.join()
        finally:
            await queue.stop()
            app.dependency_overrides.clear()
            app.state.match_queue = None

        assert response.status_code == 201
        assert seen_committed == [True]
