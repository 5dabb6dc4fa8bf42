"""
Unit Tests for the REST API

The PriceService dependency is replaced by one built on in-memory providers,
so no lifespan runs and no network is touched.

These tests verify:
- Response shapes of every endpoint
- Error mapping: configuration errors -> 400, unsupported sampling -> 422,
  all providers failed -> 502

Run with:
    pytest tests/unit/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app, get_service
from core.provider_registry import ProviderRegistry
from core.schemas import SearchResult
from services.price_service import PriceService
from storage.cache import MemoryCache

from tests.unit.conftest import NOW, FakeFiatProvider, FakeProvider


# ============================================
# Fixtures
# ============================================

@pytest.fixture
def providers():
    return [
        FakeProvider(
            "a",
            prices={"BTC": "50000", "ETH": "2500"},
            search_results=[SearchResult(symbol="BTC", name="Bitcoin", asset_type="crypto")],
        ),
        FakeProvider("b", prices={"AAPL": "190"}, max_hourly_window=None),
    ]


@pytest.fixture
def client(test_settings, providers):
    service = PriceService(
        test_settings,
        registry=ProviderRegistry(providers),
        cache=MemoryCache(clock=lambda: NOW),
        fiat_provider=FakeFiatProvider(rates={"EUR": "0.9215"}),
        clock=lambda: NOW,
    )
    app.dependency_overrides[get_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


# ============================================
# System Endpoints
# ============================================

class TestSystemEndpoints:

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["providers"] == ["a", "b"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "providers": {"a": True, "b": True, "frankfurter": True}}

    def test_providers(self, client):
        response = client.get("/providers")
        assert response.status_code == 200
        body = response.json()
        assert [p["id"] for p in body] == ["a", "b"]
        assert body[1]["max_hourly_window_days"] is None

    def test_unknown_path(self, client):
        response = client.get("/nope")
        assert response.status_code == 404
        assert response.json()["detail"] == "Not found"


# ============================================
# Quotes
# ============================================

class TestQuotesEndpoint:

    def test_quotes(self, client):
        response = client.get("/quotes", params={"symbols": "btc, eth"})
        assert response.status_code == 200
        body = response.json()
        assert body["provider"] == "a"
        assert [q["symbol"] for q in body["quotes"]] == ["BTC", "ETH"]
        assert body["attempts"][0]["outcome"] == "success"

    def test_group_tokens(self, client):
        response = client.get("/quotes", params={"symbols": "@majors"})
        assert response.status_code == 200
        assert [q["symbol"] for q in response.json()["quotes"]] == ["BTC", "ETH"]

    def test_unknown_group_is_400(self, client):
        response = client.get("/quotes", params={"symbols": "@nope"})
        assert response.status_code == 400
        assert response.json()["error"] == "unknown_symbol_group"

    def test_unknown_provider_is_400(self, client):
        response = client.get("/quotes", params={"symbols": "BTC", "provider": "ghost"})
        assert response.status_code == 400
        assert response.json()["error"] == "unknown_provider"

    def test_all_failed_is_502(self, client):
        response = client.get("/quotes", params={"symbols": "NOPE"})
        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "all_providers_failed"
        assert [a["provider"] for a in body["attempts"]] == ["a", "b"]


# ============================================
# Charts
# ============================================

class TestChartEndpoint:

    def test_chart(self, client):
        response = client.get("/chart", params={"symbols": "BTC,AAPL,ZZZ", "range": "1M"})
        assert response.status_code == 200
        body = response.json()
        assert [o["symbol"] for o in body] == ["BTC", "AAPL", "ZZZ"]
        assert body[0]["history"]["provider"] == "a"
        assert body[1]["history"]["provider"] == "b"
        assert body[2]["error"]["kind"] == "all_providers_failed"

    def test_explicit_dates(self, client):
        response = client.get("/chart", params={"symbols": "BTC", "start": "2024-05-01", "end": "2024-05-10"})
        assert response.status_code == 200
        history = response.json()[0]["history"]
        assert history["sampling"] == "daily"
        assert len(history["points"]) == 10

    def test_fiat_chart(self, client):
        response = client.get("/chart", params={"symbols": "USD,EUR", "range": "1M"})
        assert response.status_code == 200
        assert response.json()[0]["history"]["symbol"] == "USD/EUR"

    def test_bad_range_is_400(self, client):
        response = client.get("/chart", params={"symbols": "BTC", "range": "2W"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_chart_window"

    def test_malformed_date_is_400(self, client):
        response = client.get("/chart", params={"symbols": "BTC", "start": "2024-13-40"})
        assert response.status_code == 400

    def test_unsupported_sampling_is_422(self, client):
        response = client.get(
            "/chart", params={"symbols": "AAPL", "range": "5D", "sampling": "hourly", "provider": "b"}
        )
        assert response.status_code == 422
        assert response.json()["error"] == "unsupported_capability"

    def test_auto_sampling_on_daily_only_provider(self, client):
        response = client.get("/chart", params={"symbols": "AAPL", "range": "5D", "provider": "b"})
        assert response.status_code == 200
        assert response.json()[0]["history"]["sampling"] == "daily"


# ============================================
# Search and Conversion
# ============================================

class TestSearchEndpoint:

    def test_search(self, client):
        response = client.get("/search", params={"q": "bitcoin"})
        assert response.status_code == 200
        body = response.json()
        assert body["results"][0]["symbol"] == "BTC"
        assert body["results"][0]["providers"] == ["a"]
        assert body["providers"] == ["a", "b"]

    def test_limit_is_validated(self, client):
        assert client.get("/search", params={"q": "x", "limit": 0}).status_code == 422

    def test_blank_query_is_400(self, client):
        response = client.get("/search", params={"q": "  "})
        assert response.status_code == 400
        assert response.json()["error"] == "empty_request"


class TestConvertEndpoint:

    def test_convert(self, client):
        response = client.get("/convert", params={"amount": "100usd", "to": "BTC,EUR"})
        assert response.status_code == 200
        body = response.json()
        assert [o["target"] for o in body] == ["BTC", "EUR"]
        assert body[0]["result"]["target_amount"] == "0.002000"
        assert body[1]["result"]["target_amount"] == "92.15"
        assert body[1]["result"]["rate"] == "1.085187"

    def test_bad_amount_is_400(self, client):
        response = client.get("/convert", params={"amount": "lots", "to": "BTC"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_conversion_token"

    def test_unknown_fiat_is_400(self, client):
        response = client.get("/convert", params={"amount": "100xyz", "to": "BTC"})
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_fiat_code"
