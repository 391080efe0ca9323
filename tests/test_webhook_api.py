"""
API tests for the Fathom webhook, the manual trigger and client routes.

Runs the real FastAPI app against a temporary SQLite database with a
mocked analyzer and notifier.
"""

import pytest
from fastapi.testclient import TestClient

from src.ai.analyzer import RelationshipAnalyzer
from src.auth.tokens import create_access_token
from src.core.config import ClaudeConfig, GeminiConfig
from src.fathom.client import FathomClient
from src.web.app import create_app, limiter
from src.web.services import build_services
from tests.factories import JWT_SECRET, WEBHOOK_SECRET, AnalysisTestFactory, FathomTestFactory


WEBHOOK_URL = "/api/webhooks/fathom"


@pytest.fixture
def make_client(make_config, test_db, mock_analyzer, mock_notifier):
    """Build a TestClient; keyword arguments override config and analyzer."""
    clients = []

    def _make(webhook_secret=WEBHOOK_SECRET, analyzer=None):
        limiter.reset()
        config = make_config(webhook_secret=webhook_secret)
        services = build_services(
            config,
            db=test_db,
            analyzer=analyzer or mock_analyzer,
            notifier=mock_notifier,
            fathom_client=FathomClient(config.fathom),
        )
        client = TestClient(create_app(services))
        client.__enter__()
        clients.append(client)
        return client, services

    yield _make

    for client in clients:
        client.__exit__(None, None, None)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {create_access_token('user-1', 'lead@agency.com', JWT_SECRET)}"}


def _post_webhook(client, services, payload, signature=None):
    body = FathomTestFactory.encode(payload)
    headers = {"Content-Type": "application/json"}
    if signature is None:
        signature = services.fathom_client.sign(body)
    if signature:
        headers[FathomClient.SIGNATURE_HEADER] = signature
    return client.post(WEBHOOK_URL, content=body, headers=headers)


class TestFathomWebhook:
    def test_get_not_allowed(self, make_client):
        client, _ = make_client()

        assert client.get(WEBHOOK_URL).status_code == 405

    def test_missing_secret(self, make_client):
        client, _ = make_client(webhook_secret="")

        response = client.post(WEBHOOK_URL, content=b"{}", headers={FathomClient.SIGNATURE_HEADER: "v1,abc"})

        assert response.status_code == 500

    def test_missing_signature(self, make_client, acme):
        client, services = make_client()

        response = _post_webhook(client, services, FathomTestFactory.create_webhook_payload(), signature="")

        assert response.status_code == 401

    def test_bad_signature(self, make_client, acme, queue_manager):
        client, services = make_client()

        response = _post_webhook(client, services, FathomTestFactory.create_webhook_payload(), signature="v1,Zm9v")

        assert response.status_code == 401
        assert queue_manager.get_window("acme") is None

    def test_invalid_json(self, make_client):
        client, services = make_client()
        body = b"{not json"

        response = client.post(
            WEBHOOK_URL, content=body, headers={FathomClient.SIGNATURE_HEADER: services.fathom_client.sign(body)}
        )

        assert response.status_code == 400

    def test_missing_meeting(self, make_client):
        client, services = make_client()

        response = _post_webhook(client, services, {"event_type": "meeting.completed"})

        assert response.status_code == 400

    def test_processed(self, make_client, acme, queue_manager):
        client, services = make_client()
        meeting = FathomTestFactory.create_meeting(meeting_id="mtg_api")

        response = _post_webhook(client, services, FathomTestFactory.create_webhook_payload(meeting))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "processed"
        assert data["client_id"] == "acme"
        assert data["queue_size"] == 1
        assert data["analysis_dispatched"] is False
        assert queue_manager.get_window("acme").transcripts[0].meeting_id == "mtg_api"

    def test_no_mapping_is_ok(self, make_client):
        client, services = make_client()

        response = _post_webhook(client, services, FathomTestFactory.create_webhook_payload())

        assert response.status_code == 200
        assert response.json()["status"] == "no_mapping"


class TestManualTrigger:
    def test_requires_authentication(self, make_client):
        client, _ = make_client()

        assert client.post("/api/analysis/trigger", json={"clientId": "acme"}).status_code == 401

    def test_requires_client_id(self, make_client, auth_headers):
        client, _ = make_client()

        response = client.post("/api/analysis/trigger", json={}, headers=auth_headers)

        assert response.status_code == 400

    def test_unknown_client(self, make_client, auth_headers):
        client, _ = make_client()

        response = client.post("/api/analysis/trigger", json={"clientId": "nobody"}, headers=auth_headers)

        assert response.status_code == 404

    def test_too_few_transcripts(self, make_client, auth_headers, acme):
        client, _ = make_client()

        response = client.post("/api/analysis/trigger", json={"clientId": "acme"}, headers=auth_headers)

        assert response.status_code == 400

    def test_analyzer_not_configured(self, make_client, auth_headers, acme, queue_manager):
        for meeting_id, days in (("m1", 21), ("m2", 14), ("m3", 7)):
            queue_manager.append_transcript("acme", AnalysisTestFactory.create_entry(meeting_id, days))
        client, _ = make_client(analyzer=RelationshipAnalyzer(GeminiConfig(), ClaudeConfig()))

        response = client.post("/api/analysis/trigger", json={"clientId": "acme"}, headers=auth_headers)

        assert response.status_code == 412

    def test_trigger_then_unchanged(self, make_client, auth_headers, acme, queue_manager, mock_analyzer):
        for meeting_id, days in (("m1", 21), ("m2", 14), ("m3", 7)):
            queue_manager.append_transcript("acme", AnalysisTestFactory.create_entry(meeting_id, days))
        client, _ = make_client()

        first = client.post("/api/analysis/trigger", json={"clientId": "acme"}, headers=auth_headers)
        second = client.post("/api/analysis/trigger", json={"clientId": "acme"}, headers=auth_headers)

        assert first.status_code == 200
        assert first.json()["status"] == "completed"
        assert first.json()["analysis_id"] is not None
        assert second.json()["status"] == "unchanged"
        assert second.json()["analysis_id"] == first.json()["analysis_id"]
        assert mock_analyzer.analyze.call_count == 1

    def test_other_owner_sees_not_found(self, make_client, acme):
        client, _ = make_client()
        headers = {"Authorization": f"Bearer {create_access_token('user-2', 'x@agency.com', JWT_SECRET)}"}

        response = client.post("/api/analysis/trigger", json={"clientId": "acme"}, headers=headers)

        assert response.status_code == 404


class TestDashboardFlows:
    def test_new_analysis_failure_is_retryable(self, make_client, auth_headers, mock_analyzer):
        mock_analyzer.analyze.side_effect = RuntimeError("model overloaded")
        client, _ = make_client()

        response = client.post(
            "/api/analysis",
            json={"oldest": "a", "middle": "b", "recent": "c", "context": "renewal"},
            headers=auth_headers,
        )

        assert response.status_code == 502
        data = response.json()
        assert data["retryable"] is True
        assert data["transcript_data"]["recent"] == "c"

    def test_new_analysis_and_chat(self, make_client, auth_headers, acme):
        client, _ = make_client()

        created = client.post(
            "/api/analysis",
            json={"clientId": "acme", "oldest": "a", "middle": "b", "recent": "c"},
            headers=auth_headers,
        )
        analysis_id = created.json()["analysis_id"]
        chat = client.post(
            "/api/analysis/chat",
            json={"analysisId": analysis_id, "question": "What worries them?"},
            headers=auth_headers,
        )

        assert created.status_code == 200
        assert chat.status_code == 200
        assert chat.json()["answer"] == "They are worried about budget."

    def test_analysis_hidden_from_other_users(self, make_client, auth_headers, acme):
        client, _ = make_client()
        created = client.post("/api/analysis", json={"clientId": "acme", "oldest": "a", "middle": "b", "recent": "c"}, headers=auth_headers)
        other = {"Authorization": f"Bearer {create_access_token('user-2', 'x@agency.com', JWT_SECRET)}"}

        response = client.get(f"/api/analysis/{created.json()['analysis_id']}", headers=other)

        assert response.status_code == 404


class TestClientRoutes:
    def test_create_and_list(self, make_client, auth_headers):
        client, _ = make_client()

        created = client.post("/api/clients", json={"name": "Globex", "pod": "East"}, headers=auth_headers)
        listed = client.get("/api/clients", headers=auth_headers)

        assert created.status_code == 201
        assert [c["name"] for c in listed.json()] == ["Globex"]

    def test_blank_name(self, make_client, auth_headers):
        client, _ = make_client()

        assert client.post("/api/clients", json={"name": "  "}, headers=auth_headers).status_code == 400

    def test_mapping_rejects_bad_pattern(self, make_client, auth_headers, acme):
        client, _ = make_client()

        response = client.put("/api/clients/acme/mapping", json={"title_pattern": "(unclosed"}, headers=auth_headers)

        assert response.status_code == 400

    def test_mapping_lowercases_emails(self, make_client, auth_headers, acme):
        client, _ = make_client()

        response = client.put(
            "/api/clients/acme/mapping",
            json={"participant_emails": [" Jane@Acme.com "], "title_pattern": "acme"},
            headers=auth_headers,
        )

        assert response.status_code == 200
        assert response.json()["participant_emails"] == ["jane@acme.com"]

    def test_queue_view(self, make_client, auth_headers, acme, queue_manager):
        queue_manager.append_transcript("acme", AnalysisTestFactory.create_entry("m1", 3))
        client, _ = make_client()

        data = client.get("/api/clients/acme/queue", headers=auth_headers).json()

        assert len(data["transcripts"]) == 1
        assert data["is_ready"] is False

    def test_history_missing(self, make_client, auth_headers, acme):
        client, _ = make_client()

        assert client.get("/api/clients/acme/history", headers=auth_headers).status_code == 404


class TestHealth:
    def test_basic(self, make_client):
        client, _ = make_client()

        assert client.get("/api/health").json()["service"] == "client-pulse"

    def test_detailed(self, make_client):
        client, _ = make_client()

        data = client.get("/api/health/detailed").json()

        assert data["components"]["database"]["status"] == "healthy"
