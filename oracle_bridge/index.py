# oracle_bridge/index.py
"""
Secondary Index (lookup_key -> history position) and Correlation Table
(request_id -> lookup_key + position).

The callback only carries the request id, so the correlation row is what lets
fulfillment find the history entry its request produced. Correlation rows are
kept for audit until their entry is archived.
"""

from typing import Iterable, Optional, Tuple

from sqlalchemy import delete
from sqlalchemy.orm import Session

from oracle_bridge.errors import UnknownKey, UnknownRequest
from oracle_bridge.models import CorrelationRecord, IndexRecord


class SecondaryIndex:
    def __init__(self, session: Session):
        self.session = session

    def index_new(self, lookup_key: str, position: int) -> None:
        # last write wins; the previous entry stays in the history list
        row = self.session.get(IndexRecord, lookup_key)
        if row is None:
            self.session.add(IndexRecord(lookup_key=lookup_key, position=position))
        else:
            row.position = position
        self.session.flush()

    def find(self, lookup_key: str) -> Optional[int]:
        row = self.session.get(IndexRecord, lookup_key)
        return None if row is None else row.position

    def lookup(self, lookup_key: str) -> int:
        position = self.find(lookup_key)
        if position is None:
            raise UnknownKey(lookup_key)
        return position

    def drop_positions(self, positions: Iterable[int]) -> int:
        positions = list(positions)
        if not positions:
            return 0
        result = self.session.execute(
            delete(IndexRecord)
            .where(IndexRecord.position.in_(positions))
        )
        return result.rowcount


class CorrelationTable:
    def __init__(self, session: Session):
        self.session = session

    def correlate(self, request_id: str, lookup_key: str, position: int) -> None:
        self.session.add(CorrelationRecord(request_id=request_id, lookup_key=lookup_key, position=position))
        self.session.flush()

    def resolve(self, request_id: str) -> Tuple[str, int]:
        row = self.session.get(CorrelationRecord, request_id)
        if row is None:
            raise UnknownRequest(request_id)
        return row.lookup_key, row.position

    def forget(self, request_ids: Iterable[str]) -> int:
        ids = list(request_ids)
        if not ids:
            return 0
        result = self.session.execute(
            delete(CorrelationRecord)
            .where(CorrelationRecord.request_id.in_(ids))
        )
        return result.rowcount
