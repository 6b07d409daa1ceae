# oracle_bridge/registry.py
"""
Request Registry: canonical status of every request ever issued.

A request is created pending (``Sent``) when the transport accepts it and
moves to ``Fulfilled`` exactly once when its callback arrives. ``Stale`` is a
flag on a pending request that has waited longer than a caller-supplied age;
a stale request can still be fulfilled by a late callback.
"""

import datetime
from typing import Iterable, List

from sqlalchemy import func, select, update, delete
from sqlalchemy.orm import Session

from oracle_bridge.errors import AlreadyFulfilled, DuplicateRequest, UnknownRequest
from oracle_bridge.models import OracleRequest, utcnow
from oracle_bridge.schemas import RequestStatus


class RequestRegistry:
    def __init__(self, session: Session):
        self.session = session

    def create(self, request_id: str) -> None:
        if self.session.get(OracleRequest, request_id) is not None:
            raise DuplicateRequest(request_id)
        self.session.add(OracleRequest(
            request_id=request_id,
            fulfilled=False,
            stale=False,
            response=b"",
            err=b"",
            created_at=utcnow(),
        ))
        self.session.flush()

    def fulfill(self, request_id: str, response: bytes, err: bytes) -> OracleRequest:
        """
        One-shot transition to fulfilled. The UPDATE only matches a row that is
        still pending, so two concurrent callbacks cannot both win.
        """
        row = self.session.get(OracleRequest, request_id)
        if row is None:
            raise UnknownRequest(request_id)
        result = self.session.execute(
            update(OracleRequest)
            .where(OracleRequest.request_id == request_id, OracleRequest.fulfilled.is_(False))
            .values(fulfilled=True, stale=False, response=bytes(response), err=bytes(err),
                    fulfilled_at=utcnow())
        )
        if result.rowcount != 1:
            raise AlreadyFulfilled(request_id)
        self.session.refresh(row)
        return row

    def get(self, request_id: str) -> RequestStatus:
        row = self.session.get(OracleRequest, request_id)
        if row is None:
            return RequestStatus()
        return RequestStatus(
            exists=True,
            fulfilled=bool(row.fulfilled),
            response=row.response or b"",
            err=row.err or b"",
            stale=bool(row.stale),
        )

    def mark_stale(self, older_than: datetime.datetime) -> List[str]:
        ids = list(self.session.scalars(
            select(OracleRequest.request_id).where(
                OracleRequest.fulfilled.is_(False),
                OracleRequest.stale.is_(False),
                OracleRequest.created_at < older_than,
            )
        ))
        if ids:
            self.session.execute(
                update(OracleRequest)
                .where(OracleRequest.request_id.in_(ids), OracleRequest.fulfilled.is_(False))
                .values(stale=True)
            )
        return ids

    def is_terminal(self, request_id: str) -> bool:
        row = self.session.get(OracleRequest, request_id)
        return row is not None and bool(row.fulfilled or row.stale)

    def evict(self, request_ids: Iterable[str]) -> int:
        ids = list(request_ids)
        if not ids:
            return 0
        result = self.session.execute(
            delete(OracleRequest)
            .where(OracleRequest.request_id.in_(ids))
        )
        return result.rowcount

    def pending_count(self) -> int:
        return self.session.scalar(
            select(func.count()).select_from(OracleRequest).where(OracleRequest.fulfilled.is_(False))
        ) or 0
