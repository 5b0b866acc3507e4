"""Tests for the HTTP boundary."""

import base64
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import FakeAdapter, payload_text
from worklens.api import create_app
from worklens.errors import MalformedResponse, PersistenceError, UpstreamRejected, UpstreamUnavailable
from worklens.storage import SqliteReportStore

ALICE = {"X-User-Id": "alice"}
PNG = base64.b64encode(b"\x89PNG fake image").decode("ascii")


class FailingAnalysisStore(SqliteReportStore):
    def save_analysis(self, session_id, result):
        raise PersistenceError("disk full")


@pytest.fixture
def adapter():
    return FakeAdapter()


@pytest.fixture
def client(make_service, adapter):
    return TestClient(create_app(make_service(adapter)))


def start(client, headers=ALICE, goal="Finish the API"):
    response = client.post("/sessions/start", json={"goal": goal}, headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["sessionId"]


def push_capture(client, session_id, clock, headers=ALICE, **body):
    clock.advance(seconds=60)
    payload = {"timestamp": clock.now.isoformat(), "origin": "timer", "image": PNG}
    payload.update(body)
    return client.post(f"/sessions/{session_id}/captures", json=payload, headers=headers)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "worklens", "backend": "fake"}


class TestSessionRoutes:
    def test_start(self, client):
        response = client.post("/sessions/start", json={"goal": "Write tests"}, headers=ALICE)
        assert response.status_code == 200
        data = response.json()
        assert data["sessionId"]
        assert data["startedAt"].startswith("2025-03-03T09:00:00")

    @pytest.mark.parametrize("body", [{}, {"goal": ""}, {"goal": "   "}, None])
    def test_start_requires_goal(self, client, body):
        response = client.post("/sessions/start", json=body, headers=ALICE)
        assert response.status_code == 400

    def test_start_requires_caller(self, client):
        assert client.post("/sessions/start", json={"goal": "x"}).status_code == 400

    def test_second_live_session_conflicts(self, client):
        start(client)
        response = client.post("/sessions/start", json={"goal": "Another"}, headers=ALICE)
        assert response.status_code == 409

    def test_pause_resume_stop(self, client):
        session_id = start(client)
        assert client.post(f"/sessions/{session_id}/pause", headers=ALICE).json() == {"status": "paused"}
        assert client.post(f"/sessions/{session_id}/resume", headers=ALICE).json() == {"status": "active"}
        stopped = client.post(f"/sessions/{session_id}/stop", headers=ALICE)
        assert stopped.status_code == 200
        assert stopped.json()["status"] == "completed"
        assert stopped.json()["score"] is None

    def test_illegal_transition_conflicts(self, client):
        session_id = start(client)
        assert client.post(f"/sessions/{session_id}/resume", headers=ALICE).status_code == 409

    def test_unknown_or_foreign_session(self, client):
        session_id = start(client)
        assert client.post("/sessions/missing/pause", headers=ALICE).status_code == 404
        assert client.post(f"/sessions/{session_id}/pause", headers={"X-User-Id": "bob"}).status_code == 404
        assert client.get(f"/sessions/{session_id}", headers={"X-User-Id": "bob"}).status_code == 404

    def test_stop_returns_score(self, client, clock, adapter):
        session_id = start(client)
        for _ in range(3):
            assert push_capture(client, session_id, clock).status_code == 201
        data = client.post(f"/sessions/{session_id}/stop", headers=ALICE).json()
        assert data["score"]["productivityScore"] >= 0
        assert data["latestAnalysisId"] == data["score"]["analysisId"]
        assert len(adapter.calls) == 1

    def test_get_session(self, client, clock):
        session_id = start(client)
        push_capture(client, session_id, clock)
        data = client.get(f"/sessions/{session_id}", headers=ALICE).json()
        assert data["status"] == "active"
        assert data["goal"] == "Finish the API"
        assert data["captures"] == {"total": 1, "sinceLastAnalysis": 1, "analysisInFlight": False}


class TestCaptureRoute:
    def test_sequence_is_returned(self, client, clock):
        session_id = start(client)
        first = push_capture(client, session_id, clock, windowTitle="Docs", application="Chrome")
        second = push_capture(client, session_id, clock, origin="click")
        assert first.json()["sequence"] == 0
        assert second.json()["sequence"] == 1

    def test_out_of_order(self, client, clock):
        session_id = start(client)
        push_capture(client, session_id, clock)
        earlier = clock.now - timedelta(seconds=30)
        response = client.post(
            f"/sessions/{session_id}/captures",
            json={"timestamp": earlier.isoformat(), "origin": "timer"},
            headers=ALICE,
        )
        assert response.status_code == 400

    def test_paused_session_rejects(self, client, clock):
        session_id = start(client)
        client.post(f"/sessions/{session_id}/pause", headers=ALICE)
        assert push_capture(client, session_id, clock).status_code == 400

    def test_bad_image(self, client, clock):
        session_id = start(client)
        assert push_capture(client, session_id, clock, image="not base64!!").status_code == 400

    def test_timestamp_without_offset(self, client):
        session_id = start(client)
        response = client.post(
            f"/sessions/{session_id}/captures",
            json={"timestamp": "2030-01-01T10:00:00", "origin": "timer"},
            headers=ALICE,
        )
        assert response.status_code == 422

    def test_capture_after_stop(self, client, clock):
        session_id = start(client)
        client.post(f"/sessions/{session_id}/stop", headers=ALICE)
        response = push_capture(client, session_id, clock)
        assert response.status_code == 400
        assert response.json()["error"] == "WrongSession"

    def test_transition_after_stop_conflicts(self, client):
        session_id = start(client)
        client.post(f"/sessions/{session_id}/stop", headers=ALICE)
        assert client.post(f"/sessions/{session_id}/pause", headers=ALICE).status_code == 409


class TestAnalyzeRoute:
    def test_analyze(self, client, adapter):
        session_id = start(client)
        response = client.post(
            f"/sessions/{session_id}/analyze",
            json={"captures": [PNG, f"data:image/png;base64,{PNG}"], "context": {"timeRange": "last 30 min"}},
            headers=ALICE,
        )
        assert response.status_code == 200, response.text
        data = response.json()
        assert data["analysisId"] == data["result"]["analysisId"]
        assert data["result"]["summary"]["timeBreakdown"]["coding"] == 20
        assert adapter.calls[0][0].time_range == "last 30 min"
        assert adapter.calls[0][1][0].image == b"\x89PNG fake image"

    @pytest.mark.parametrize("body", [{}, {"captures": []}, {"captures": ["%%%"]}, None])
    def test_bad_input(self, client, body):
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json=body, headers=ALICE)
        assert response.status_code == 400

    def test_unknown_session(self, client):
        response = client.post("/sessions/missing/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 404

    def test_malformed_response_is_500(self, client, adapter):
        adapter.replies = [payload_text()[:80]]
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 500
        assert response.json()["error"] == "MalformedResponse"

    def test_non_json_upstream_body_is_500(self, client, adapter):
        adapter.replies = [MalformedResponse("Local LLM returned a non-JSON body", raw="<html>proxy error</html>")]
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 500
        assert response.json()["error"] == "MalformedResponse"

    def test_upstream_unavailable_is_500(self, client, adapter):
        adapter.replies = [UpstreamUnavailable(3, TimeoutError("timed out"))]
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 500
        assert "timed out" in response.json()["detail"]

    def test_rejected_upstream_is_502(self, client, adapter):
        adapter.replies = [UpstreamRejected(413, "payload too large")]
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 502

    def test_storage_failure_still_returns_analysis(self, make_service, tmp_path):
        service = make_service(FakeAdapter(), store=FailingAnalysisStore(tmp_path / "f.db"), goals=None)
        client = TestClient(create_app(service))
        session_id = start(client)
        response = client.post(f"/sessions/{session_id}/analyze", json={"captures": [PNG]}, headers=ALICE)
        assert response.status_code == 200
