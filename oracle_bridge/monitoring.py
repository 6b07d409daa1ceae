# oracle_bridge/monitoring.py
"""
Centralized monitoring: Prometheus metrics, structured JSON logging, optional Sentry.

Env vars:
- PROMETHEUS_ENABLED (default: true)
- SENTRY_DSN (optional)
- LOG_AS_JSON (default: true)
- LOG_LEVEL (default: INFO)
- ENVIRONMENT (default: development)
"""

import os
import logging
import time
from typing import Tuple

from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST, REGISTRY,
)
from pythonjsonlogger.json import JsonFormatter

# Sentry is only needed when SENTRY_DSN is set
try:
    import sentry_sdk
    _HAS_SENTRY = True
except ImportError:
    _HAS_SENTRY = False

# --- ENV flags
PROMETHEUS_ENABLED = os.getenv("PROMETHEUS_ENABLED", "true").lower() in ("1", "true", "yes")
SENTRY_DSN = os.getenv("SENTRY_DSN", None)
LOG_AS_JSON = os.getenv("LOG_AS_JSON", "true").lower() in ("1", "true", "yes")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")


# --- Logger setup
def setup_logger(name: str = "oracle-bridge", level: int = None) -> logging.Logger:
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO")) if level is None else level
    logger = logging.getLogger(name)
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        if LOG_AS_JSON:
            handler.setFormatter(JsonFormatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s"
            ))
        logger.addHandler(handler)
    return logger


logger = setup_logger()

# --- Sentry (optional)
if SENTRY_DSN and _HAS_SENTRY:
    sentry_sdk.init(dsn=SENTRY_DSN, environment=ENVIRONMENT)
    logger.info("Sentry initialized")


# --- Prometheus metrics
REQUEST_COUNT = Counter(
    "oracle_http_requests_total",
    "Total /api/oracle HTTP requests",
    ["method", "endpoint", "status"],
)

REQUEST_LATENCY = Histogram(
    "oracle_http_request_latency_seconds",
    "HTTP request latency in seconds",
    ["endpoint"],
)

ORACLE_REQUESTS_SENT = Counter(
    "oracle_requests_sent_total",
    "Oracle requests handed to the gateway transport",
)

FULFILLMENTS = Counter(
    "oracle_fulfillments_total",
    "Fulfillment callbacks processed",
    ["outcome"],
)

CORE_ERRORS = Counter(
    "oracle_core_errors_total",
    "Errors raised by the request lifecycle core",
    ["error_code"],
)

FULFILLMENT_LATENCY = Histogram(
    "oracle_fulfillment_latency_seconds",
    "Time between send and fulfillment",
    buckets=(0.5, 1, 5, 15, 30, 60, 300, 900, 3600, float("inf")),
)

PENDING_REQUESTS = Gauge(
    "oracle_pending_requests",
    "Requests sent but not yet fulfilled",
)

ARCHIVED_ENTRIES = Counter(
    "oracle_history_archived_total",
    "History entries moved to the archive",
)


# --- Helper wrappers (never crash the app)
def observe_request(start_ts: float, endpoint: str, method: str, status: str):
    try:
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(time.time() - start_ts)
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=status).inc()
    except Exception:
        pass


def inc_sent():
    try:
        ORACLE_REQUESTS_SENT.inc()
    except Exception:
        pass


def observe_fulfillment(latency_s: float, outcome: str):
    try:
        FULFILLMENTS.labels(outcome=outcome).inc()
        if latency_s is not None:
            FULFILLMENT_LATENCY.observe(max(latency_s, 0.0))
    except Exception:
        pass


def inc_core_error(code: str):
    try:
        CORE_ERRORS.labels(error_code=code).inc()
    except Exception:
        pass


def set_pending(n: int):
    try:
        PENDING_REQUESTS.set(n)
    except Exception:
        pass


def inc_archived(n: int):
    try:
        ARCHIVED_ENTRIES.inc(n)
    except Exception:
        pass


def prometheus_metrics_response() -> Tuple[bytes, str]:
    """Return (body_bytes, content_type) for Prometheus scrape."""
    try:
        return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
    except Exception:
        return b"", CONTENT_TYPE_LATEST
