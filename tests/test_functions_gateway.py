# tests/test_functions_gateway.py
"""
Gateway transports. The HTTP transport is driven through httpx.MockTransport
so no network is touched.
"""
import base64
import json
import httpx
import pytest

from oracle_bridge.connectors import functions_gateway as gw
from oracle_bridge.errors import TransportError


def _http_transport(handler, callback_url="https://bridge.example/api/oracle/callback"):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return gw.HttpGatewayTransport(base_url="https://gateway.example/", callback_url=callback_url, client=client)


def test_http_transport_posts_payload_and_returns_id():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"request_id": "0xabc"})

    t = _http_transport(handler)
    rid = t.send(b'{"args":["2025-01-19"]}', 12, 300000, "don-1")
    assert rid == "0xabc"
    assert seen["url"] == "https://gateway.example/requests"
    assert base64.b64decode(seen["body"]["payload"]) == b'{"args":["2025-01-19"]}'
    assert seen["body"]["subscription_id"] == 12
    assert seen["body"]["gas_limit"] == 300000
    assert seen["body"]["don_id"] == "don-1"
    assert seen["body"]["callback_url"] == "https://bridge.example/api/oracle/callback"


def test_http_transport_error_status_raises():
    t = _http_transport(lambda request: httpx.Response(503, json={"error": "busy"}))
    with pytest.raises(TransportError) as exc:
        t.send(b"x", 1, 1, "don")
    assert exc.value.details["status_code"] == 503


def test_http_transport_missing_id_raises():
    t = _http_transport(lambda request: httpx.Response(200, json={}))
    with pytest.raises(TransportError):
        t.send(b"x", 1, 1, "don")


def test_http_transport_connection_error_raises():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    t = _http_transport(handler)
    with pytest.raises(TransportError):
        t.send(b"x", 1, 1, "don")


def test_http_transport_requires_url():
    with pytest.raises(TransportError):
        gw.HttpGatewayTransport(base_url="")


def test_mock_transport_issues_unique_ids_and_delivers():
    t = gw.MockGatewayTransport()
    delivered = []
    t.set_callback(lambda rid, resp, err: delivered.append((rid, resp, err)))

    ids = {t.send(b"p", 1, 1, "don") for _ in range(50)}
    assert len(ids) == 50
    assert t.last_request_id() in ids

    t.deliver("some-id", b"ok", b"")
    assert delivered == [("some-id", b"ok", b"")]


def test_mock_transport_deliver_without_callback():
    with pytest.raises(TransportError):
        gw.MockGatewayTransport().deliver("x", b"", b"")


def test_get_transport_respects_mock_flag(monkeypatch):
    monkeypatch.setattr(gw, "MOCK_GATEWAY", True)
    assert isinstance(gw.get_transport(), gw.MockGatewayTransport)
