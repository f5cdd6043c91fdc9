"""
Tests for the web/app.py Flask API.

Tests the scrape endpoint's status mapping, authentication and health check.
"""

import pytest
import os
from pathlib import Path
from unittest.mock import MagicMock, patch
import sys

# Add src and the project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))
sys.path.insert(0, str(Path(__file__).parent.parent))

from errors import StoreError


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def mock_store():
    """Mocked seen-article store that reports itself open."""
    store = MagicMock()
    store.is_open = True
    return store


@pytest.fixture
def app_module(mock_store):
    """Freshly imported web.app with the store replaced."""
    if "web.app" in sys.modules:
        del sys.modules["web.app"]

    with patch.dict(os.environ, {"HARVESTER_API_KEY": ""}, clear=False):
        import web.app as module

    module.app.config["TESTING"] = True
    with patch.object(module, "store", mock_store):
        yield module


@pytest.fixture
def client(app_module):
    return app_module.app.test_client()


@pytest.fixture
def sample_results():
    return [
        {
            "headlineUrl": "https://news.example.com/latest",
            "urlHtmlTag": "a.headline",
            "contentData": [
                {
                    "articleUrl": "https://news.example.com/story/1",
                    "channel": "general",
                    "headline": "Headline",
                    "publishDate": "",
                    "author": "",
                    "publisher": "news.example.com",
                    "imageUrl": "",
                    "imageAlt": "",
                    "content": "Body",
                }
            ],
            "headlineCount": 1,
        }
    ]


# =============================================================================
# Scrape Endpoint Tests
# =============================================================================


class TestScrapeEndpoint:
    """Tests for POST /scrape."""

    def test_success_returns_results(self, client, app_module, mock_store, sample_results):
        websites = [{"headlineUrl": "https://news.example.com/latest", "urlHtmlTag": "a.headline"}]

        with patch.object(app_module, "scrape_websites", return_value=sample_results) as mock_scrape:
            response = client.post("/scrape", json={"websites": websites})

        assert response.status_code == 200
        assert response.get_json() == sample_results
        mock_scrape.assert_called_once_with(websites, config=app_module.config, store=mock_store)

    def test_empty_list(self, client, app_module):
        with patch.object(app_module, "scrape_websites", return_value=[]):
            response = client.post("/scrape", json={"websites": []})

        assert response.status_code == 200
        assert response.get_json() == []

    def test_websites_not_a_list(self, client, app_module):
        with patch.object(app_module, "scrape_websites") as mock_scrape:
            response = client.post("/scrape", json={"websites": "https://news.example.com"})

        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid request"}
        mock_scrape.assert_not_called()

    def test_missing_websites(self, client):
        response = client.post("/scrape", json={"sites": []})

        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid request"}

    def test_body_not_json(self, client):
        response = client.post("/scrape", data="websites=1", content_type="text/plain")

        assert response.status_code == 400
        assert response.get_json() == {"error": "Invalid request"}

    def test_body_is_array(self, client):
        response = client.post("/scrape", json=[{"headlineUrl": "https://news.example.com"}])

        assert response.status_code == 400

    def test_unexpected_failure(self, client, app_module):
        with patch.object(app_module, "scrape_websites", side_effect=RuntimeError("browser crashed")):
            response = client.post("/scrape", json={"websites": []})

        assert response.status_code == 500
        assert response.get_json() == {"error": "Scraping failed", "details": "browser crashed"}

    def test_store_failure(self, client, app_module):
        with patch.object(
            app_module, "scrape_websites", side_effect=StoreError("database is locked")
        ):
            response = client.post("/scrape", json={"websites": []})

        assert response.status_code == 500
        body = response.get_json()
        assert body["error"] == "Scraping failed"
        assert "locked" in body["details"]

    def test_get_not_allowed(self, client):
        assert client.get("/scrape").status_code == 405

    def test_trace_id_header(self, client, app_module):
        with patch.object(app_module, "scrape_websites", return_value=[]):
            response = client.post(
                "/scrape", json={"websites": []}, headers={"X-Trace-ID": "abc123"}
            )

        assert response.headers["X-Trace-ID"] == "abc123"


# =============================================================================
# Authentication Tests
# =============================================================================


class TestApiKeyAuthentication:
    """Tests for the optional API key."""

    def test_open_when_unset(self, client, app_module):
        with patch.object(app_module, "scrape_websites", return_value=[]):
            response = client.post("/scrape", json={"websites": []})
        assert response.status_code == 200

    def test_missing_key(self, client, app_module):
        with patch.object(app_module, "API_KEY", "secret"):
            response = client.post("/scrape", json={"websites": []})

        assert response.status_code == 401
        assert response.get_json()["error"] == "API key required"

    def test_wrong_key(self, client, app_module):
        with patch.object(app_module, "API_KEY", "secret"):
            response = client.post(
                "/scrape", json={"websites": []}, headers={"X-API-Key": "guess"}
            )

        assert response.status_code == 403
        assert response.get_json()["error"] == "Invalid API key"

    def test_key_in_header(self, client, app_module):
        with patch.object(app_module, "API_KEY", "secret"):
            with patch.object(app_module, "scrape_websites", return_value=[]):
                response = client.post(
                    "/scrape", json={"websites": []}, headers={"X-API-Key": "secret"}
                )

        assert response.status_code == 200

    def test_key_in_query(self, client, app_module):
        with patch.object(app_module, "API_KEY", "secret"):
            with patch.object(app_module, "scrape_websites", return_value=[]):
                response = client.post("/scrape?api_key=secret", json={"websites": []})

        assert response.status_code == 200


# =============================================================================
# Health Check Tests
# =============================================================================


class TestHealthCheck:
    """Tests for GET /health."""

    def test_healthy(self, client, app_module):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["components"] == {"store": "ok"}
        assert data["version"] == app_module.APP_VERSION

    def test_unhealthy_store(self, client, mock_store):
        mock_store.get_connection.side_effect = StoreError("unable to open database file")

        response = client.get("/health")

        assert response.status_code == 503
        data = response.get_json()
        assert data["status"] == "unhealthy"
        assert data["components"]["store"].startswith("error:")

    def test_health_skips_auth(self, client, app_module):
        with patch.object(app_module, "API_KEY", "secret"):
            response = client.get("/health")
        assert response.status_code == 200

    def test_store_opened_on_first_use(self, client, mock_store):
        mock_store.is_open = False

        client.get("/health")

        mock_store.open.assert_called_once()
