"""API tests for the /match endpoints (store and queue overridden)."""
import uuid
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from unmute.api.deps import get_match_store
from unmute.config import get_settings
from unmute.main import app
from unmute.services.match_queue import MatchRecalculationQueue
from unmute.utils.security import create_access_token


class FakeApiStore:
    def __init__(self, records):
        self.records = records

    async def list_matches(self, owner_id):
        return sorted(
            (r for r in self.records if r.owner_id == owner_id),
            key=lambda r: r.score,
            reverse=True,
        )

    async def get_match(self, owner_id, matched_user_id):
        for r in self.records:
            if r.owner_id == owner_id and r.matched_user_id == matched_user_id:
                return r
        return None


def _record(owner_id, score, username="someone", interests=None):
    matched_id = uuid.uuid4()
    return SimpleNamespace(
        owner_id=owner_id,
        matched_user_id=matched_id,
        score=score,
        last_updated=datetime(2025, 3, 1, tzinfo=timezone.utc),
        matched_user=SimpleNamespace(
            id=matched_id,
            username=username,
            bio="hello",
            interests=interests,
        ),
    )


@pytest.fixture
def caller_id():
    return uuid.uuid4()


@pytest.fixture
def auth_headers(caller_id):
    return {"Authorization": f"Bearer {create_access_token(caller_id)}"}


@pytest.fixture
def records(caller_id):
    return [
        _record(caller_id, 0.4, "paper_lantern"),
        _record(caller_id, 0.9, "quiet_river", ["music"]),
        _record(uuid.uuid4(), 0.8, "not_yours"),
    ]


@pytest.fixture
def client(records):
    app.dependency_overrides[get_match_store] = lambda: FakeApiStore(records)
    app.state.match_queue = MatchRecalculationQueue(AsyncMock(return_value=0))
    yield TestClient(app)
    app.dependency_overrides.clear()
    app.state.match_queue = None


class TestAuth:

    def test_missing_token_rejected(self, client):
        response = client.get("/api/v1/match/")
        assert response.status_code == 401

    def test_garbage_token_rejected(self, client):
        response = client.get("/api/v1/match/", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_non_uuid_subject_rejected(self, client):
        settings = get_settings()
        token = jwt.encode({"sub": "12345"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        response = client.get("/api/v1/match/", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401


class TestListMatches:

    def test_returns_own_matches_best_first(self, client, auth_headers):
        response = client.get("/api/v1/match/", headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert [m["score"] for m in body] == [0.9, 0.4]
        assert body[0]["matched_user"]["username"] == "quiet_river"
        assert body[0]["matched_user"]["interests"] == ["music"]
        assert body[1]["matched_user"]["interests"] == []


class TestGetMatch:

    def test_returns_single_record(self, client, auth_headers, records):
        target = records[0].matched_user_id

        response = client.get(f"/api/v1/match/{target}", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["matched_user_id"] == str(target)
        assert response.json()["score"] == 0.4

    def test_other_users_record_is_not_found(self, client, auth_headers, records):
        response = client.get(f"/api/v1/match/{records[2].matched_user_id}", headers=auth_headers)
        assert response.status_code == 404

    def test_malformed_id_rejected(self, client, auth_headers):
        response = client.get("/api/v1/match/not-a-uuid", headers=auth_headers)
        assert response.status_code == 422


class TestRecalculate:

    def test_acknowledges_immediately(self, client, auth_headers, caller_id):
        response = client.post("/api/v1/match/recalculate", headers=auth_headers)

        assert response.status_code == 202
        assert response.json() == {
            "status": "started",
            "message": "Match recalculation started",
            "queued": True,
        }
        assert app.state.match_queue.status(caller_id).reason == "api_recalculate"

    def test_repeat_request_still_reports_started(self, client, auth_headers):
        client.post("/api/v1/match/recalculate", headers=auth_headers)
        response = client.post("/api/v1/match/recalculate", headers=auth_headers)

        assert response.status_code == 202
        assert response.json()["status"] == "started"
        assert response.json()["queued"] is False

    def test_status_after_enqueue(self, client, auth_headers):
        client.post("/api/v1/match/recalculate", headers=auth_headers)

        response = client.get("/api/v1/match/recalculate/status", headers=auth_headers)

        assert response.status_code == 200
        assert response.json()["state"] == "queued"
        assert response.json()["attempts"] == 0

    def test_status_without_job_is_not_found(self, client, auth_headers):
        response = client.get("/api/v1/match/recalculate/status", headers=auth_headers)
        assert response.status_code == 404

    def test_unavailable_queue_returns_503(self, client, auth_headers):
        app.state.match_queue = None
        response = client.post("/api/v1/match/recalculate", headers=auth_headers)
        assert response.status_code == 503
