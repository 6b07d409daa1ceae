# oracle_bridge/consumer.py
import os
import datetime
import threading
import dataclasses
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from oracle_bridge import db as dbmod
from oracle_bridge import monitoring
from oracle_bridge.connectors.functions_gateway import GatewayTransport, get_transport
from oracle_bridge.errors import ConfigError, IndexOutOfRange, InputTooLong, OracleError
from oracle_bridge.history import HistoryList
from oracle_bridge.index import CorrelationTable, SecondaryIndex
from oracle_bridge.models import utcnow
from oracle_bridge.processors import request_builder as _request_builder
from oracle_bridge.registry import RequestRegistry
from oracle_bridge.schemas import HistoryEntry, LastRequest, Page, RequestStatus

MAX_GAS_LIMIT = 2 ** 32 - 1

# Every mutation (send or callback) runs to completion under this lock, so a
# request's create -> fulfill transition is never interleaved with another.
_LOCK = threading.RLock()

BytesLike = Union[bytes, bytearray, str]


def _as_bytes(value: Optional[BytesLike]) -> bytes:
    if value is None:
        return b""
    if isinstance(value, str):
        return value.encode("utf-8")
    return bytes(value)


@dataclass(frozen=True)
class OracleConfig:
    source: str = _request_builder.DEFAULT_SOURCE
    gas_limit: int = 300_000
    don_id: str = "fun-ethereum-sepolia-1"
    subscription_id: int = 0

    @classmethod
    def from_env(cls) -> "OracleConfig":
        return cls(
            source=_request_builder.load_source(),
            gas_limit=int(os.getenv("ORACLE_GAS_LIMIT", "300000")),
            don_id=os.getenv("ORACLE_DON_ID", "fun-ethereum-sepolia-1"),
            subscription_id=int(os.getenv("ORACLE_SUBSCRIPTION_ID", "0")),
        ).validated()

    def validated(self) -> "OracleConfig":
        if not isinstance(self.source, str) or not self.source.strip():
            raise ConfigError("source must be a non-empty program")
        if not isinstance(self.gas_limit, int) or not 0 < self.gas_limit <= MAX_GAS_LIMIT:
            raise ConfigError(f"gas_limit must be in 1..{MAX_GAS_LIMIT}", {"gas_limit": self.gas_limit})
        if not isinstance(self.don_id, str) or not self.don_id.strip():
            raise ConfigError("don_id must be a non-empty string")
        if not isinstance(self.subscription_id, int) or self.subscription_id < 0:
            raise ConfigError("subscription_id must be a non-negative integer",
                              {"subscription_id": self.subscription_id})
        return self

    def public(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


class OracleConsumer:
    """
    Issues oracle requests and correlates their asynchronous fulfillments.

    submit(): build payload -> transport.send -> registry.create +
              history.append + index.index_new + correlation.correlate
    fulfill(): registry.fulfill -> correlation.resolve -> history.update

    Each of the two runs in a single DB transaction; a failure leaves no
    partial state behind.
    """

    def __init__(self, config: Optional[OracleConfig] = None, transport: Optional[GatewayTransport] = None):
        self.config = (config or OracleConfig.from_env()).validated()
        self.transport = transport or get_transport()
        self.transport.set_callback(self.fulfill)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def submit(self, lookup_key: str, secondary_key: str = "", originator: str = "anonymous") -> str:
        try:
            originator = originator or "anonymous"
            if len(originator) > _request_builder.MAX_KEY_LENGTH:
                raise InputTooLong("originator", _request_builder.MAX_KEY_LENGTH, len(originator))
            payload = _request_builder.build_request(lookup_key, secondary_key, source=self.config.source)
        except OracleError as e:
            monitoring.inc_core_error(e.error_code)
            raise

        with _LOCK:
            config = self.config
            try:
                request_id = self.transport.send(payload, config.subscription_id, config.gas_limit, config.don_id)
            except OracleError as e:
                monitoring.inc_core_error(e.error_code)
                raise
            try:
                with dbmod.session_scope() as db:
                    registry = RequestRegistry(db)
                    registry.create(request_id)
                    index = SecondaryIndex(db)
                    position = HistoryList(db, index).append(
                        request_id=request_id,
                        originator=originator,
                        lookup_key=lookup_key,
                        secondary_key=secondary_key,
                    )
                    index.index_new(lookup_key, position)
                    CorrelationTable(db).correlate(request_id, lookup_key, position)
                    pending = registry.pending_count()
            except Exception:
                # The gateway already holds this request; its callback will be rejected
                monitoring.logger.exception("Failed to record sent request", extra={"request_id": request_id})
                raise

        monitoring.inc_sent()
        monitoring.set_pending(pending)
        monitoring.logger.info("Oracle request sent", extra={
            "request_id": request_id, "lookup_key": lookup_key, "position": position,
        })
        return request_id

    def fulfill(self, request_id: str, response: Optional[BytesLike] = b"", err: Optional[BytesLike] = b"") -> HistoryEntry:
        response_b = _as_bytes(response)
        err_b = _as_bytes(err)
        try:
            with _LOCK, dbmod.session_scope() as db:
                registry = RequestRegistry(db)
                row = registry.fulfill(request_id, response_b, err_b)
                _, position = CorrelationTable(db).resolve(request_id)
                entry = HistoryList(db).update(
                    position,
                    data=response_b.decode("utf-8", errors="replace"),
                    timestamp=row.fulfilled_at,
                )
                latency = (row.fulfilled_at - row.created_at).total_seconds()
                pending = registry.pending_count()
        except IndexOutOfRange:
            monitoring.inc_core_error(IndexOutOfRange.error_code)
            monitoring.logger.error("Correlation table points outside history", extra={"request_id": request_id})
            raise
        except OracleError as e:
            monitoring.inc_core_error(e.error_code)
            monitoring.observe_fulfillment(None, "rejected")
            monitoring.logger.warning("Fulfillment rejected", extra={
                "request_id": request_id, "error_code": e.error_code,
            })
            raise

        monitoring.observe_fulfillment(latency, "error" if err_b else "success")
        monitoring.set_pending(pending)
        monitoring.logger.info("Oracle request fulfilled", extra={
            "request_id": request_id, "position": entry.position, "has_error": bool(err_b),
        })
        return entry

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def status(self, request_id: str) -> RequestStatus:
        with dbmod.session_scope() as db:
            return RequestRegistry(db).get(request_id)

    def entry_by_key(self, lookup_key: str) -> HistoryEntry:
        try:
            with dbmod.session_scope() as db:
                return HistoryList(db).get_by_key(lookup_key)
        except OracleError as e:
            monitoring.inc_core_error(e.error_code)
            raise

    def history(self, start: int, end: int) -> List[HistoryEntry]:
        try:
            with dbmod.session_scope() as db:
                return HistoryList(db).range(start, end)
        except OracleError as e:
            monitoring.inc_core_error(e.error_code)
            raise

    def history_all(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        with dbmod.session_scope() as db:
            return HistoryList(db).list_all(limit=limit)

    def history_page(self, limit: int) -> Page:
        """Whole live history, cut at ``limit`` entries."""
        with dbmod.session_scope() as db:
            history = HistoryList(db)
            entries = history.list_all(limit=limit + 1)
            truncated = len(entries) > limit
            entries = entries[:limit]
            return Page(
                entries=entries,
                first_position=history.first_position(),
                length=history.length(),
                truncated=truncated,
                next_start=entries[-1].position + 1 if truncated else None,
            )

    def last_sent(self) -> Optional[LastRequest]:
        return self._last(fulfilled_only=False)

    def last_fulfilled(self) -> Optional[LastRequest]:
        return self._last(fulfilled_only=True)

    def _last(self, fulfilled_only: bool) -> Optional[LastRequest]:
        # Derived from registry + history on every call; nothing is cached
        with dbmod.session_scope() as db:
            registry = RequestRegistry(db)
            history = HistoryList(db)
            entry = history.latest_fulfilled() if fulfilled_only else history.latest()
            if entry is None:
                return None
            status = registry.get(entry.request_id)
            return LastRequest(
                request_id=entry.request_id,
                originator=entry.originator,
                lookup_key=entry.lookup_key,
                secondary_key=entry.secondary_key,
                data=entry.data,
                timestamp=entry.timestamp,
                fulfilled=status.fulfilled,
                response=status.response.decode("utf-8", errors="replace"),
                err=status.err.decode("utf-8", errors="replace"),
            )

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------
    def mark_stale(self, max_age_seconds: float) -> List[str]:
        cutoff = utcnow() - datetime.timedelta(seconds=max_age_seconds)
        with _LOCK, dbmod.session_scope() as db:
            ids = RequestRegistry(db).mark_stale(cutoff)
        if ids:
            monitoring.logger.info("Requests marked stale", extra={"count": len(ids)})
        return ids

    def archive(self, max_age_seconds: float) -> List[HistoryEntry]:
        """
        Archive history entries older than ``max_age_seconds`` whose request is
        fulfilled or stale, and evict their registry and correlation rows.
        """
        cutoff = utcnow() - datetime.timedelta(seconds=max_age_seconds)
        with _LOCK, dbmod.session_scope() as db:
            registry = RequestRegistry(db)
            archived = HistoryList(db).archive_prefix(cutoff, registry.is_terminal)
            ids = [e.request_id for e in archived]
            CorrelationTable(db).forget(ids)
            registry.evict(ids)
        if archived:
            monitoring.inc_archived(len(archived))
            monitoring.logger.info("History entries archived", extra={
                "count": len(archived), "through_position": archived[-1].position,
            })
        return archived

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def update_config(self, **changes: Any) -> OracleConfig:
        unknown = set(changes) - {f.name for f in dataclasses.fields(OracleConfig)}
        if unknown:
            raise ConfigError(f"Unknown config fields: {sorted(unknown)}")
        with _LOCK:
            self.config = dataclasses.replace(self.config, **changes).validated()
        monitoring.logger.info("Oracle config updated", extra={"fields": sorted(changes)})
        return self.config
