import pytest
from fastapi.testclient import TestClient

from api import app

from conftest import FakeMarketSource


@pytest.fixture
def client():
    yield TestClient(app)
    app.state.market_service = None


def test_healthz(client):
    assert client.get("/healthz").json() == {"status": "ok"}


def test_market_data_route(client, make_service):
    app.state.market_service = make_service()
    response = client.get("/api/market-data")

    assert response.status_code == 200
    body = response.json()
    assert body["price24h"]["current"] == pytest.approx(2000.0)
    assert len(body["indicators"]) == 8
    assert {"total", "buy", "sell"} <= set(body["volume24h"])


def test_sentiment_route_hides_body(client, make_service):
    app.state.market_service = make_service()
    body = client.get("/api/sentiment").json()

    assert len(body["news"]["headlines"]) == 3
    assert "body" not in body["news"]["headlines"][0]
    assert body["news"]["headlines"][0]["sentiment"] == "positive"


def test_predictions_route(client, make_service):
    app.state.market_service = make_service()
    body = client.get("/api/predictions").json()

    assert body["source"] == "fallback"
    assert body["rangeLow"] < body["rangeHigh"]
    assert isinstance(body["timestamp"], int)


def test_upstream_failure_hides_details_in_production(client, make_service, upstream_error, monkeypatch):
    monkeypatch.setenv("APP_ENV", "production")
    app.state.market_service = make_service(market=FakeMarketSource(error=upstream_error))

    response = client.get("/api/market-data")

    assert response.status_code == 500
    assert response.json() == {"error": "Failed to fetch market data"}


def test_upstream_failure_includes_details_in_development(client, make_service, upstream_error, monkeypatch):
    monkeypatch.setenv("APP_ENV", "development")
    app.state.market_service = make_service(market=FakeMarketSource(error=upstream_error))

    response = client.get("/api/predictions")

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Failed to fetch predictions"
    assert "HTTP 503" in body["details"]


def test_missing_service_is_unavailable(client):
    app.state.market_service = None

    assert client.get("/api/sentiment").status_code == 503
