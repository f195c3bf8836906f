import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fastapi.testclient import TestClient
import main
from agent.model_router import StageModelRouter
from core.settings import AppSettings
from data.market_data_service import MarketDataService
from data.provider_registry import ApiKeys, build_provider_bundle


@pytest.fixture
def client(monkeypatch):
    service = MarketDataService(build_provider_bundle(ApiKeys(), include_mock=True))
    monkeypatch.setattr(main, "data_service", service)
    monkeypatch.setattr(main, "base_settings", AppSettings())
    monkeypatch.setattr(main, "router", StageModelRouter())
    monkeypatch.setattr(main, "_init_done", True)
    monkeypatch.setattr(main, "AGENT_API_KEY", "test-key")
    monkeypatch.setattr(main.limiter, "enabled", False)
    return TestClient(main.app)


HEADERS = {"X-API-Key": "test-key"}


def test_root_and_health_are_open(client):
    assert client.get("/").json()["status"] == "running"
    health = client.get("/health").json()
    assert health["status"] == "ok"
    assert health["data_service_loaded"] is True


def test_missing_api_key_is_401(client):
    assert client.get("/quotes", params={"symbols": "AAPL"}).status_code == 401


def test_wrong_api_key_is_403(client):
    resp = client.get("/quotes", params={"symbols": "AAPL"}, headers={"X-API-Key": "nope"})
    assert resp.status_code == 403


def test_quotes_from_offline_data(client):
    resp = client.get("/quotes", params={"symbols": "aapl, msft"}, headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert set(body["quotes"]) == {"AAPL", "MSFT"}
    assert body["quotes"]["AAPL"]["source"] == "mock"
    assert body["missing"] == []
    assert "request_id" in body


def test_no_data_maps_to_404(client, monkeypatch):
    empty = MarketDataService(build_provider_bundle(ApiKeys(), include_mock=False))
    monkeypatch.setattr(main, "data_service", empty)
    resp = client.get("/quotes", params={"symbols": "AAPL"}, headers=HEADERS)
    assert resp.status_code == 404
    assert resp.json()["error"] == "no_data"
    assert resp.json()["capability"] == "quote"


def test_empty_symbols_is_invalid_input(client):
    resp = client.get("/quotes", params={"symbols": " , "}, headers=HEADERS)
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_input"


def test_shortlist_endpoint(client):
    resp = client.post("/shortlist", headers=HEADERS, json={
        "symbols": ["AAPL", "MSFT", "NVDA"], "intent": "swing", "risk": "moderate", "max_shortlist": 2,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert len(body["shortlist"]) == 2
    assert body["data_source"] == "synthetic"
    assert body["intent"] == "swing"
    assert any("truncated" in limit for limit in body["limits_applied"])


def test_shortlist_negative_bound_rejected(client):
    resp = client.post("/shortlist", headers=HEADERS, json={"symbols": ["AAPL"], "max_shortlist": -1})
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_input"


def test_shortlist_bad_settings_override(client):
    resp = client.post("/shortlist", headers=HEADERS, json={
        "symbols": ["AAPL"], "settings": {"rsi_oversold": 80},
    })
    assert resp.status_code == 422
    assert resp.json()["error"] == "invalid_input"


def test_shortlist_unknown_intent_is_validation_error(client):
    resp = client.post("/shortlist", headers=HEADERS, json={"symbols": ["AAPL"], "intent": "scalp"})
    assert resp.status_code == 422
    assert "detail" in resp.json()


def test_route_reasoning_stage(client):
    resp = client.get("/route/reasoning", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert body["stage"] == "reasoning"
    assert body["provider"] == "openai"
    assert body["tools"] == "web_search"
    assert body["temperature"] is None


def test_providers_endpoint(client):
    resp = client.get("/providers", headers=HEADERS)
    assert resp.status_code == 200
    body = resp.json()
    assert "blacklisted" in body
    assert "cache" in body


def test_api_key_check_disabled_when_unset(client, monkeypatch):
    monkeypatch.setattr(main, "AGENT_API_KEY", None)
    assert client.get("/route/verdict").status_code == 200


def test_context_endpoint(client):
    resp = client.get("/context", params={"symbols": "AAPL", "days": 5}, headers=HEADERS)
    assert resp.status_code == 200
    ctx = resp.json()["context"]["AAPL"]
    assert ctx["quote"]["source"] == "mock"
    assert ctx["profile"]["sector"] == "Technology"
    assert len(ctx["daily"]) == 5


def test_context_rejects_bad_days(client):
    resp = client.get("/context", params={"symbols": "AAPL", "days": 0}, headers=HEADERS)
    assert resp.status_code == 422
