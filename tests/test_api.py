"""Tests for API routes."""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from fakes import FakeCatalog, FakeClock, FakeExternal, found_result
from productcheck.cache import InMemoryCache, SuggestionCache
from productcheck.config import Settings
from productcheck.models import InternalProduct, InternalVerification
from productcheck.service import ProductLookupService


@pytest.fixture
def service():
    catalog = FakeCatalog(
        ["Peak Milk"],
        verification=InternalVerification(result="verified", product=InternalProduct(id="p1", name="Peak Milk")),
    )
    off = FakeExternal(
        "openfoodfacts",
        ["Peak Milk Powder"],
        result=found_result("openfoodfacts", "Peak Milk", 0.92),
    )
    config = Settings()
    return ProductLookupService(
        catalog,
        [off],
        config=config,
        suggestion_cache=SuggestionCache.from_settings(config, clock=FakeClock()),
        validation_cache=InMemoryCache(),
    )


@pytest.fixture
def client(service):
    from productcheck.main import app, get_service

    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_suggestions_lists_internal_then_external(client):
    response = client.get("/suggestions", params={"q": "peak"}, headers={"X-Client-Id": "tab-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["suggestions"] == ["Peak Milk"]
    assert [item["name"] for item in data["external_products"]] == ["Peak Milk Powder"]
    assert data["external_products"][0]["source"] == "openfoodfacts"
    assert data["is_loading"] is False


def test_short_suggestion_query_returns_empty_state(client):
    response = client.get("/suggestions", params={"q": "p"})

    assert response.status_code == 200
    assert response.json()["suggestions"] == []


def test_verify_combined(client):
    response = client.post("/verify", json={"q": "Peak Milk", "mode": "combined"})

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "resolved"
    assert data["internal"]["is_verified"] is True
    assert data["external"]["display_confidence"] == 92


def test_verify_session_is_scoped_to_client_header(client, service):
    response = client.post("/verify", json={"q": "Peak Milk", "mode": "external"}, headers={"X-Client-Id": "tab-1"})

    assert response.status_code == 200
    assert service.session_for("tab-1").query == "Peak Milk"
    assert service.session_for("tab-2") is None
    assert service.session is None


def test_verify_rejects_blank_query(client):
    response = client.post("/verify", json={"q": "   "})

    assert response.status_code == 400


def test_select_internal_name(client):
    response = client.post("/select", json={"name": "Peak Milk"})

    assert response.status_code == 200
    assert response.json()["mode"] == "combined"


def test_select_requires_name_or_product(client):
    response = client.post("/select", json={})

    assert response.status_code == 400


def test_health_reports_index_state(client):
    es = MagicMock()
    es.cluster.health.return_value = {"status": "green"}
    es.count.return_value = {"count": 3}

    with patch("productcheck.main.get_client", return_value=es):
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"elasticsearch": "green", "index": "catalog", "empty": False}
