"""Integration tests for FastAPI endpoints."""
import pytest
from fastapi.testclient import TestClient
from payvat.api.app import create_app
from payvat.engines.legacy import LegacyEngine
from payvat.pipeline import DocumentProcessor
from payvat.telemetry import RecordingEmitter
from tests.factories import FakeDocumentStore, make_document, make_settings


@pytest.fixture
def doc_store():
    return FakeDocumentStore(make_document())


@pytest.fixture
def client(doc_store):
    settings = make_settings()
    processor = DocumentProcessor(
        doc_store,
        [LegacyEngine()],
        settings=settings,
        emitter=RecordingEmitter(),
    )
    app = create_app(settings, processor=processor)
    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.integration
class TestHealthEndpoint:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["service"] == "payvat-api"


@pytest.mark.integration
class TestProcessEndpoint:
    def test_malformed_json(self, client, doc_store):
        response = client.post(
            "/api/documents/process",
            content=b"{not json",
            headers={"Content-Type": "application/json", "X-User-Id": "user-1"},
        )
        assert response.status_code == 400
        assert response.json()["errorCode"] == "INVALID_JSON"
        assert doc_store.find_calls == 0

    def test_not_owned(self, client):
        response = client.post(
            "/api/documents/process",
            json={"documentId": "doc-1"},
            headers={"X-User-Id": "someone-else"},
        )
        assert response.status_code == 404
        assert response.json()["error"] == "Document not found or not authorized"

    def test_process_with_legacy_engine(self, client, doc_store):
        response = client.post(
            "/api/documents/process",
            json={"documentId": "doc-1"},
            headers={"X-User-Id": "user-1", "X-Forwarded-For": "203.0.113.7, 10.0.0.1", "User-Agent": "pytest"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["extractedData"]["purchaseVAT"] == [23.0]
        assert data["processingInfo"]["processingType"] == "LEGACY"
        assert doc_store.folders == {("user-1", 2025, 1)}
        [entry] = doc_store.audit_entries
        assert entry.ip_address == "203.0.113.7"
        assert entry.user_agent == "pytest"

    def test_second_request_is_cached(self, client):
        headers = {"X-User-Id": "user-1"}
        client.post("/api/documents/process", json={"documentId": "doc-1"}, headers=headers)
        response = client.post("/api/documents/process", json={"documentId": "doc-1"}, headers=headers)

        assert response.status_code == 200
        assert response.json()["processingInfo"]["processingType"] == "CACHED"
