# tests/test_api_oracle_endpoints.py
"""
Tests for the /api/oracle/* endpoints.
Uses a disposable SQLite DB and the app's mock gateway transport.
"""
import pytest
from fastapi.testclient import TestClient

from oracle_bridge.app import app
from oracle_bridge import db as dbmod
from oracle_bridge import app as app_module
from oracle_bridge.connectors.functions_gateway import MockGatewayTransport
from oracle_bridge.consumer import OracleConfig, OracleConsumer

client = TestClient(app)


@pytest.fixture(autouse=True)
def fresh_consumer(tmp_path, monkeypatch):
    dbmod.reconfigure(f"sqlite:///{tmp_path / 'api.db'}")
    dbmod.init_db()
    consumer = OracleConsumer(
        config=OracleConfig(source="return args[0];", don_id="don-api", subscription_id=7),
        transport=MockGatewayTransport(),
    )
    monkeypatch.setattr(app_module, "consumer", consumer)
    yield consumer


def _submit(key, **extra):
    r = client.post("/api/oracle/requests", json={"lookup_key": key, **extra})
    assert r.status_code == 202
    return r.json()["request_id"]


def test_submit_callback_and_status_flow():
    rid = _submit("2025-01-19")

    r = client.get(f"/api/oracle/requests/{rid}")
    assert r.status_code == 200
    rec = r.json()["record"]
    assert rec["exists"] is True
    assert rec["fulfilled"] is False
    assert rec["state"] == "sent"

    r = client.post("/api/oracle/callback", json={"request_id": rid, "response": "4.123", "err": ""})
    assert r.status_code == 200
    assert r.json()["entry"]["data"] == "4.123"

    r = client.get(f"/api/oracle/requests/{rid}")
    assert r.json()["record"] == {
        "exists": True, "fulfilled": True, "stale": False, "state": "fulfilled",
        "response": "4.123", "err": "",
    }

    r = client.get("/api/oracle/history/key/2025-01-19")
    assert r.status_code == 200
    assert r.json()["entry"]["data"] == "4.123"


def test_submit_empty_key_rejected():
    r = client.post("/api/oracle/requests", json={"lookup_key": ""})
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_EMPTY_KEY"
    assert r.json()["status"] == "error"


def test_status_unknown_request_404():
    r = client.get("/api/oracle/requests/nonexistent-id")
    assert r.status_code == 404
    assert r.json()["error_code"] == "E_UNKNOWN_REQUEST"


def test_callback_unknown_request_404():
    r = client.post("/api/oracle/callback", json={"request_id": "ghost", "response": "1"})
    assert r.status_code == 404
    j = r.json()
    assert j["error_code"] == "E_UNKNOWN_REQUEST"
    assert j["request_id"] == "ghost"


def test_duplicate_callback_409():
    rid = _submit("2025-01-19")
    client.post("/api/oracle/callback", json={"request_id": rid, "response": "first"})
    r = client.post("/api/oracle/callback", json={"request_id": rid, "response": "second"})
    assert r.status_code == 409
    assert r.json()["error_code"] == "E_ALREADY_FULFILLED"


def test_history_by_unknown_key_404():
    r = client.get("/api/oracle/history/key/never")
    assert r.status_code == 404
    assert r.json()["error_code"] == "E_UNKNOWN_KEY"


def test_history_range_endpoint():
    for d in range(1, 4):
        _submit(f"2025-01-0{d}")
    r = client.get("/api/oracle/history", params={"start": 0, "end": 2})
    assert r.status_code == 200
    assert [e["lookup_key"] for e in r.json()["entries"]] == ["2025-01-01", "2025-01-02", "2025-01-03"]

    r = client.get("/api/oracle/history", params={"start": 0, "end": 5})
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_INVALID_RANGE"
    assert r.json()["details"]["length"] == 3

    r = client.get("/api/oracle/history", params={"start": 2, "end": 1})
    assert r.status_code == 400


def test_history_all_is_capped(monkeypatch):
    monkeypatch.setattr(app_module, "HISTORY_ALL_LIMIT", 2)
    for d in range(1, 4):
        _submit(f"2025-01-0{d}")
    r = client.get("/api/oracle/history/all")
    j = r.json()
    assert r.status_code == 200
    assert len(j["entries"]) == 2
    assert j["truncated"] is True
    assert j["next_start"] == 2
    assert j["length"] == 3


def test_last_endpoint(fresh_consumer):
    r = client.get("/api/oracle/last")
    assert r.json()["last_sent"] is None

    rid = _submit("2025-01-19", originator="alice")
    fresh_consumer.transport.deliver(rid, b"4.5", b"")
    j = client.get("/api/oracle/last").json()
    assert j["last_sent"]["request_id"] == rid
    assert j["last_sent"]["originator"] == "alice"
    assert j["last_fulfilled"]["data"] == "4.5"


def test_maintenance_endpoints_on_fresh_requests():
    _submit("2025-01-19")
    r = client.post("/api/oracle/maintenance/stale", json={"max_age_seconds": 3600})
    assert r.status_code == 200
    assert r.json()["stale_request_ids"] == []

    r = client.post("/api/oracle/maintenance/archive", json={"max_age_seconds": 3600})
    assert r.status_code == 200
    assert r.json()["archived"] == 0

    r = client.post("/api/oracle/maintenance/archive", json={"max_age_seconds": -1})
    assert r.status_code == 422


def test_config_read_and_update():
    r = client.get("/api/oracle/config")
    assert r.json()["config"]["don_id"] == "don-api"

    r = client.put("/api/oracle/config", json={"gas_limit": 250000})
    assert r.status_code == 200
    assert r.json()["config"]["gas_limit"] == 250000

    r = client.put("/api/oracle/config", json={"gas_limit": 0})
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_CONFIG"


def test_health():
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_submit_overlong_key_rejected_without_send(fresh_consumer):
    r = client.post("/api/oracle/requests", json={"lookup_key": "k" * 300})
    assert r.status_code == 400
    assert r.json()["error_code"] == "E_INPUT_TOO_LONG"
    assert fresh_consumer.transport.sent == {}


def test_shutdown_closes_gateway_transport(fresh_consumer):
    closed = []
    fresh_consumer.transport.close = lambda: closed.append(True)
    with TestClient(app) as c:
        assert c.get("/health").status_code == 200
        assert closed == []
    assert closed == [True]
