"""Tests for the embedding HTTP endpoints."""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, MagicMock

from markdown_embed.dependencies import get_app_settings, get_pipeline, get_queue_publisher
from markdown_embed.main import app

EMBEDDINGS_PATH = "/api/v1/embeddings"
KNOWN_URL = "https://example.com/docs/intro"
AUTH_HEADERS = {"Authorization": "Bearer test-token"}


@pytest.fixture
def client(settings, pipeline, metadata_repository, storage_service):
    """Test client whose pipeline runs against in-memory collaborators."""
    metadata_repository.add("doc123", KNOWN_URL, "pages/doc123.md")
    storage_service.blobs["pages/doc123.md"] = "Hello world"

    app.dependency_overrides[get_app_settings] = lambda: settings
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    def test_missing_token(self, client, vector_service):
        response = client.post(EMBEDDINGS_PATH, json={"url": KNOWN_URL})

        assert response.status_code == 401
        assert response.json() == {"message": "Unauthorized", "status": "failed"}
        assert vector_service.calls == []

    def test_wrong_token(self, client):
        response = client.post(
            EMBEDDINGS_PATH,
            json={"url": KNOWN_URL},
            headers={"Authorization": "Bearer wrong-token"},
        )

        assert response.status_code == 401

    def test_auth_checked_before_method(self, client):
        response = client.get(EMBEDDINGS_PATH)

        assert response.status_code == 401

    @pytest.mark.parametrize("method", ["HEAD", "OPTIONS"])
    def test_auth_checked_before_method_for_head_and_options(self, client, method):
        response = client.request(method, EMBEDDINGS_PATH)

        assert response.status_code == 401


class TestRequestValidation:
    def test_wrong_method(self, client):
        response = client.put(EMBEDDINGS_PATH, json={"url": KNOWN_URL}, headers=AUTH_HEADERS)

        assert response.status_code == 405
        assert response.json() == {"message": "Invalid request method", "status": "failed"}

    @pytest.mark.parametrize("method", ["HEAD", "OPTIONS"])
    def test_head_and_options_are_invalid_methods(self, client, method):
        response = client.request(method, EMBEDDINGS_PATH, headers=AUTH_HEADERS)

        assert response.status_code == 405

    def test_unparseable_url(self, client, vector_service):
        response = client.post(EMBEDDINGS_PATH, json={"url": "not a url"}, headers=AUTH_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"message": "Invalid URL", "status": "failed"}
        assert vector_service.calls == []

    def test_missing_url(self, client):
        response = client.post(EMBEDDINGS_PATH, json={"namespace": "x"}, headers=AUTH_HEADERS)

        assert response.status_code == 400
        assert response.json() == {"message": "URL is required", "status": "failed"}

    def test_invalid_json(self, client):
        response = client.post(
            EMBEDDINGS_PATH,
            content=b"{not json",
            headers={**AUTH_HEADERS, "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["message"] == "URL is required"

    def test_non_string_url(self, client):
        response = client.post(EMBEDDINGS_PATH, json={"url": 42}, headers=AUTH_HEADERS)

        assert response.status_code == 400


class TestOutcomes:
    def test_success(self, client, vector_service):
        response = client.post(EMBEDDINGS_PATH, json={"url": KNOWN_URL}, headers=AUTH_HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "message": "Successfully upserted vectors",
            "status": "success",
            "billedUnits": {"input_tokens": 3},
            "warnings": [],
        }
        assert [v.id for v in vector_service.upserted] == ["doc123:0"]
        assert "X-Request-ID" in response.headers

    def test_namespace_override(self, client, vector_service):
        client.post(
            EMBEDDINGS_PATH,
            json={"url": KNOWN_URL, "namespace": "team-docs"},
            headers=AUTH_HEADERS,
        )

        assert vector_service.upserted[0].namespace == "team-docs"

    def test_unknown_url(self, client):
        response = client.post(
            EMBEDDINGS_PATH, json={"url": "https://example.com/missing"}, headers=AUTH_HEADERS
        )

        assert response.status_code == 404
        assert response.json() == {"message": "No valid markdown found", "status": "hardfail"}

    def test_url_matched_in_canonical_form(
        self, client, metadata_repository, storage_service, vector_service
    ):
        metadata_repository.add("root1", "https://example.com/", "pages/root1.md")
        storage_service.blobs["pages/root1.md"] = "Home page"

        response = client.post(
            EMBEDDINGS_PATH, json={"url": "https://Example.com"}, headers=AUTH_HEADERS
        )

        assert response.status_code == 200
        assert metadata_repository.lookups == ["https://example.com/"]
        assert [v.id for v in vector_service.upserted] == ["root1:0"]

    def test_transient_failure(self, client, embedding_service, provider_error):
        embedding_service.error = provider_error

        response = client.post(EMBEDDINGS_PATH, json={"url": KNOWN_URL}, headers=AUTH_HEADERS)

        assert response.status_code == 500
        assert response.json() == {
            "message": "Embedding request failed: ConnectError",
            "status": "softfail",
        }


class TestEnqueue:
    @pytest.fixture
    def publisher(self):
        publisher = MagicMock()
        publisher.publish = AsyncMock()
        app.dependency_overrides[get_queue_publisher] = lambda: publisher
        return publisher

    def test_publishes_each_job(self, client, publisher):
        response = client.post(
            f"{EMBEDDINGS_PATH}/enqueue",
            json={"jobs": [{"url": KNOWN_URL}, {"url": "https://example.com/b", "namespace": "team"}]},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 202
        assert response.json()["queued"] == 2
        published = [call.args[0] for call in publisher.publish.await_args_list]
        assert published == [
            {"url": KNOWN_URL, "namespace": "markdown-rag"},
            {"url": "https://example.com/b", "namespace": "team"},
        ]

    def test_publishes_canonical_url(self, client, publisher):
        client.post(
            f"{EMBEDDINGS_PATH}/enqueue",
            json={"jobs": [{"url": "https://EXAMPLE.com:443"}]},
            headers=AUTH_HEADERS,
        )

        publisher.publish.assert_awaited_once_with(
            {"url": "https://example.com/", "namespace": "markdown-rag"}
        )

    def test_rejects_unparseable_url(self, client, publisher):
        response = client.post(
            f"{EMBEDDINGS_PATH}/enqueue",
            json={"jobs": [{"url": "example.com/page"}]},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["message"] == "Invalid URL"
        publisher.publish.assert_not_awaited()

    def test_rejects_job_without_url(self, client, publisher):
        response = client.post(
            f"{EMBEDDINGS_PATH}/enqueue",
            json={"jobs": [{"url": KNOWN_URL}, {"namespace": "team"}]},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 400
        publisher.publish.assert_not_awaited()

    def test_requires_auth(self, client, publisher):
        response = client.post(f"{EMBEDDINGS_PATH}/enqueue", json={"jobs": [{"url": KNOWN_URL}]})

        assert response.status_code == 401

    def test_queue_unavailable(self, client):
        response = client.post(
            f"{EMBEDDINGS_PATH}/enqueue",
            json={"jobs": [{"url": KNOWN_URL}]},
            headers=AUTH_HEADERS,
        )

        assert response.status_code == 502
        assert response.json()["status"] == "failed"


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_pipeline_unavailable(self, client):
        app.dependency_overrides.pop(get_pipeline)

        response = client.post(EMBEDDINGS_PATH, json={"url": KNOWN_URL}, headers=AUTH_HEADERS)

        assert response.status_code == 503
        assert response.json() == {
            "message": "Embedding pipeline is not available",
            "status": "failed",
        }
