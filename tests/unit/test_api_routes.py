"""Unit tests for API routes."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from pulse_core.aggregation.cache import InMemoryResponseCache
from pulse_core.aggregation.credentials import InMemoryBrandStore
from pulse_core.aggregation.types import ProviderKind
from pulse_core.api.services import AggregationServices, get_services
from pulse_core.config import Settings
from pulse_core.exceptions import ProviderError
from pulse_core.main import create_app
from pulse_core.providers.base import ProviderAdapter
from pulse_core.providers.registry import AdapterRegistry


class StubVisitors(ProviderAdapter):
    kind = ProviderKind.ANALYTICS
    source = "ga4"

    async def _fetch_rows(self, token, credential, date_range, filters):
        return [
            {
                "dimensionValues": [{"value": "20240101"}, {"value": "Paid Search"}],
                "metricValues": [{"value": "7"}, {"value": "8"}, {"value": "2"}],
            }
        ]


class StubSales(ProviderAdapter):
    kind = ProviderKind.SALES
    source = "ga4"

    async def _fetch_rows(self, token, credential, date_range, filters):
        return [
            {
                "dimensionValues": [{"value": "20240101"}],
                "metricValues": [{"value": "2"}, {"value": "50"}],
            }
        ]


class StubTossdown(ProviderAdapter):
    kind = ProviderKind.SALES
    source = "tossdown"
    requires_token = False

    async def _fetch_rows(self, token, credential, date_range, filters):
        return [{"date": "2024-01-01", "grand_total": "120", "source": credential.external_id}]


class FailingMeta(ProviderAdapter):
    kind = ProviderKind.AD_SPEND
    source = "meta_ads"

    async def _fetch_rows(self, token, credential, date_range, filters):
        raise ProviderError(self.kind.value, self.source, "HTTP 500")


BRANDS = {
    "acme": {
        "connections": {
            "ga4": {"property_id": "111", "access_token": "ga4-access"},
            "meta_ads": {"ad_account_id": "act_222", "access_token": "meta-access"},
        }
    }
}


@pytest.fixture
def services():
    registry = AdapterRegistry()
    for adapter_cls in (StubVisitors, StubSales, StubTossdown, FailingMeta):
        registry.register(adapter_cls)
    return AggregationServices(
        settings=Settings(),
        session=MagicMock(),
        cache=InMemoryResponseCache(),
        registry=registry,
        brand_store=InMemoryBrandStore(BRANDS),
    )


@pytest.fixture
def client(services):
    """Create test client with injected aggregation services."""
    app = create_app(Settings())
    app.dependency_overrides[get_services] = lambda: services
    return TestClient(app)


def test_overview_degrades_failed_provider(client):
    response = client.get(
        "/api/v1/overview",
        params={"brand_id": "acme", "from": "2024-01-01", "to": "2024-01-02"},
    )

    assert response.status_code == 200
    data = response.json()
    assert data["daily_data"][0]["date"] == "2024-01-01"
    assert data["totals"]["visitors"]["total"] == 7
    assert data["totals"]["visitors"]["paid_search"] == 7
    assert data["totals"]["sales"]["revenue"] == 50
    assert data["totals"]["sales"]["average_order_value"] == 25
    assert data["data_sources"]["ad_spend"] == {
        "enabled": True,
        "available": False,
        "source": "meta_ads",
        "reason": "provider",
    }
    assert response.headers["X-Cache"] == "MISS"
    assert len(response.headers["X-Cache-Fingerprint"]) == 64


def test_overview_cache_hit_and_bypass(client):
    params = {"brand_id": "acme", "from": "2024-01-01", "to": "2024-01-02"}

    first = client.get("/api/v1/overview", params=params)
    second = client.get("/api/v1/overview", params=params)
    bypass = client.get("/api/v1/overview", params={**params, "cache": "0"})

    assert first.headers["X-Cache"] == "MISS"
    assert second.headers["X-Cache"] == "HIT"
    assert bypass.headers["X-Cache"] == "BYPASS"
    assert second.json()["totals"] == first.json()["totals"]
    assert (
        first.headers["X-Cache-Fingerprint"]
        == second.headers["X-Cache-Fingerprint"]
        == bypass.headers["X-Cache-Fingerprint"]
    )


def test_combined_uses_separate_namespace(client):
    params = {"brand_id": "acme", "from": "2024-01-01", "to": "2024-01-02"}

    overview = client.get("/api/v1/overview", params=params)
    combined = client.get("/api/v1/combined-analytics", params=params)

    assert combined.status_code == 200
    assert combined.headers["X-Cache"] == "MISS"
    assert combined.headers["X-Cache-Fingerprint"] != overview.headers["X-Cache-Fingerprint"]
    assert combined.json()["data_sources"]["sales"]["source"] == "ga4"


def test_overview_without_accounts_is_400(client):
    response = client.get("/api/v1/overview", params={"brand_id": "nobody"})

    assert response.status_code == 400
    assert "no provider account" in response.json()["detail"]


def test_inverted_dates_are_400(client):
    response = client.get(
        "/api/v1/overview",
        params={"brand_id": "acme", "from": "2024-02-01", "to": "2024-01-01"},
    )

    assert response.status_code == 400


def test_accounts_without_tokens_are_400(client):
    response = client.get("/api/v1/overview", params={"ga4_property_id": "111"})

    assert response.status_code == 400
    assert "no credentials" in response.json()["detail"]


def test_tossdown_from_query_params_alone(client):
    response = client.get(
        "/api/v1/overview",
        params={
            "sales_source": "tossdown",
            "sales_source_id": "42",
            "from": "2024-01-01",
            "to": "2024-01-01",
        },
    )

    assert response.status_code == 200
    data = response.json()
    assert data["totals"]["sales"]["revenue"] == 120
    assert data["totals"]["sales"]["orders_by_source"] == {"42": 1.0}
    assert data["data_sources"]["sales"]["source"] == "tossdown"
    assert data["data_sources"]["sales"]["available"] is True
    assert data["data_sources"]["analytics"]["enabled"] is False


def test_clear_cache(client):
    params = {"brand_id": "acme", "from": "2024-01-01", "to": "2024-01-02"}
    first = client.get("/api/v1/overview", params=params)
    fp = first.headers["X-Cache-Fingerprint"]

    cleared = client.post("/api/v1/cache/clear", params={"fingerprint": fp})
    assert cleared.status_code == 200
    assert cleared.json() == {"cleared": 1, "fingerprint": fp}

    again = client.get("/api/v1/overview", params=params)
    assert again.headers["X-Cache"] == "MISS"

    cleared_all = client.post("/api/v1/cache/clear")
    assert cleared_all.json() == {"cleared": 1, "fingerprint": None}


def test_internal_fault_is_500(client, monkeypatch):
    def broken_merge(partials_by_kind):
        raise RuntimeError("merge exploded")

    monkeypatch.setattr("pulse_core.aggregation.engine.merge", broken_merge)

    response = client.get("/api/v1/overview", params={"brand_id": "acme"})

    assert response.status_code == 500
    assert response.json()["detail"] == "Internal aggregation error"
