# oracle_bridge/connectors/functions_gateway.py
"""
Transport to the external computation gateway.

send() hands over an encoded request and returns the gateway's request id
immediately. The result arrives later, out of band: either through
POST /api/oracle/callback (HTTP gateway) or through deliver() on the mock.

Configuration (env vars):
  MOCK_GATEWAY=true              (in-process mock for dev/tests)
  ORACLE_GATEWAY_URL=...         (base URL of the HTTP gateway)
  ORACLE_GATEWAY_TIMEOUT=10      (seconds)
  ORACLE_CALLBACK_URL=...        (where the gateway should post fulfillments)
"""

import os
import base64
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import httpx

from oracle_bridge import monitoring
from oracle_bridge.errors import TransportError

MOCK_GATEWAY = os.getenv("MOCK_GATEWAY", "true").lower() in ("1", "true", "yes")
ORACLE_GATEWAY_URL = os.getenv("ORACLE_GATEWAY_URL", "").strip().rstrip("/")
ORACLE_GATEWAY_TIMEOUT = float(os.getenv("ORACLE_GATEWAY_TIMEOUT", "10"))
ORACLE_CALLBACK_URL = os.getenv("ORACLE_CALLBACK_URL", "").strip()

FulfillCallback = Callable[[str, bytes, bytes], None]


@dataclass(frozen=True)
class SentRequest:
    request_id: str
    payload: bytes
    subscription_id: int
    gas_limit: int
    don_id: str


class GatewayTransport:
    """Base transport. Subclasses implement _send."""

    def __init__(self):
        self._callback: Optional[FulfillCallback] = None

    def set_callback(self, callback: FulfillCallback) -> None:
        self._callback = callback

    def send(self, payload: bytes, subscription_id: int, gas_limit: int, don_id: str) -> str:
        request_id = self._send(payload, subscription_id, gas_limit, don_id)
        if not request_id:
            raise TransportError("Gateway returned an empty request id")
        return request_id

    def _send(self, payload: bytes, subscription_id: int, gas_limit: int, don_id: str) -> str:
        raise NotImplementedError

    def close(self) -> None:
        """Release transport resources; called on app shutdown."""


class MockGatewayTransport(GatewayTransport):
    """
    In-process gateway. Every send gets a fresh uuid4 hex id; nothing is
    delivered until deliver() is called for that id.
    """

    def __init__(self):
        super().__init__()
        self.sent: Dict[str, SentRequest] = {}
        self.order: List[str] = []

    def _send(self, payload: bytes, subscription_id: int, gas_limit: int, don_id: str) -> str:
        request_id = uuid.uuid4().hex
        self.sent[request_id] = SentRequest(request_id, bytes(payload), subscription_id, gas_limit, don_id)
        self.order.append(request_id)
        return request_id

    def last_request_id(self) -> Optional[str]:
        return self.order[-1] if self.order else None

    def deliver(self, request_id: str, response: bytes = b"", err: bytes = b"") -> None:
        if self._callback is None:
            raise TransportError("No fulfillment callback registered")
        self._callback(request_id, response, err)


class HttpGatewayTransport(GatewayTransport):
    """POSTs requests to an HTTP gateway; fulfillments come back via the callback endpoint."""

    def __init__(self, base_url: str = ORACLE_GATEWAY_URL, timeout: float = ORACLE_GATEWAY_TIMEOUT,
                 callback_url: str = ORACLE_CALLBACK_URL, client: Optional[httpx.Client] = None):
        super().__init__()
        if not base_url:
            raise TransportError("ORACLE_GATEWAY_URL is not configured")
        self.base_url = base_url.rstrip("/")
        self.callback_url = callback_url
        self._client = client or httpx.Client(timeout=timeout)

    def _send(self, payload: bytes, subscription_id: int, gas_limit: int, don_id: str) -> str:
        body = {
            "payload": base64.b64encode(payload).decode("ascii"),
            "subscription_id": subscription_id,
            "gas_limit": gas_limit,
            "don_id": don_id,
        }
        if self.callback_url:
            body["callback_url"] = self.callback_url
        try:
            resp = self._client.post(f"{self.base_url}/requests", json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPStatusError as e:
            monitoring.logger.warning("Gateway rejected request", extra={"status_code": e.response.status_code})
            raise TransportError(f"Gateway rejected request: HTTP {e.response.status_code}",
                                 {"status_code": e.response.status_code}) from e
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"Gateway call failed: {e}") from e
        request_id = data.get("request_id") if isinstance(data, dict) else None
        return str(request_id) if request_id else ""

    def close(self) -> None:
        self._client.close()


def get_transport() -> GatewayTransport:
    if MOCK_GATEWAY:
        return MockGatewayTransport()
    return HttpGatewayTransport()
