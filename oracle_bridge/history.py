# oracle_bridge/history.py
"""
Append-only, time-ordered history of requests.

Positions are zero-based and never reused or shifted. Archival moves a prefix
of old entries into ``archived_history_entries``; the live list then starts at
``first_position()`` instead of 0, and every range query must stay inside
``[first_position(), length())``.
"""

import datetime
from typing import Callable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from oracle_bridge.errors import IndexOutOfRange, InvalidRange
from oracle_bridge.index import SecondaryIndex
from oracle_bridge.models import ArchivedHistoryRecord, HistoryRecord, OracleRequest, utcnow
from oracle_bridge.schemas import HistoryEntry


class HistoryList:
    def __init__(self, session: Session, index: Optional[SecondaryIndex] = None):
        self.session = session
        self.index = index or SecondaryIndex(session)

    def length(self) -> int:
        live = self.session.scalar(select(func.max(HistoryRecord.position)))
        archived = self.session.scalar(select(func.max(ArchivedHistoryRecord.position)))
        top = max(p for p in (live, archived, -1) if p is not None)
        return top + 1

    def first_position(self) -> int:
        low = self.session.scalar(select(func.min(HistoryRecord.position)))
        return self.length() if low is None else low

    def append(self, request_id: str, originator: str, lookup_key: str,
               secondary_key: str = "", timestamp: Optional[datetime.datetime] = None) -> int:
        position = self.length()
        self.session.add(HistoryRecord(
            position=position,
            request_id=request_id,
            originator=originator,
            timestamp=timestamp or utcnow(),
            lookup_key=lookup_key,
            secondary_key=secondary_key or "",
            data="",
        ))
        self.session.flush()
        return position

    def update(self, position: int, data: str, timestamp: datetime.datetime) -> HistoryEntry:
        row = self.session.get(HistoryRecord, position)
        if row is None:
            raise IndexOutOfRange(position, self.length())
        row.data = data
        row.timestamp = timestamp
        self.session.flush()
        return HistoryEntry.model_validate(row)

    def get(self, position: int) -> HistoryEntry:
        row = self.session.get(HistoryRecord, position)
        if row is None:
            raise IndexOutOfRange(position, self.length())
        return HistoryEntry.model_validate(row)

    def range(self, start: int, end: int) -> List[HistoryEntry]:
        """
        Inclusive range [start, end]. Out-of-bounds windows are rejected, not
        clamped, so a caller's off-by-one shows up as an error.
        """
        length = self.length()
        low = self.first_position()
        if start < low or start > end or end >= length:
            raise InvalidRange(start, end, low, length)
        rows = self.session.scalars(
            select(HistoryRecord)
            .where(HistoryRecord.position >= start, HistoryRecord.position <= end)
            .order_by(HistoryRecord.position)
        ).all()
        return [HistoryEntry.model_validate(r) for r in rows]

    def list_all(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        stmt = select(HistoryRecord).order_by(HistoryRecord.position)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [HistoryEntry.model_validate(r) for r in self.session.scalars(stmt).all()]

    def get_by_key(self, lookup_key: str) -> HistoryEntry:
        return self.get(self.index.lookup(lookup_key))

    def latest(self) -> Optional[HistoryEntry]:
        """Newest live entry by send position."""
        row = self.session.scalars(
            select(HistoryRecord).order_by(HistoryRecord.position.desc()).limit(1)
        ).first()
        return None if row is None else HistoryEntry.model_validate(row)

    def latest_fulfilled(self) -> Optional[HistoryEntry]:
        """Live entry whose request was fulfilled most recently."""
        row = self.session.scalars(
            select(HistoryRecord)
            .join(OracleRequest, OracleRequest.request_id == HistoryRecord.request_id)
            .where(OracleRequest.fulfilled.is_(True))
            .order_by(OracleRequest.fulfilled_at.desc(), HistoryRecord.position.desc())
            .limit(1)
        ).first()
        return None if row is None else HistoryEntry.model_validate(row)

    def archive_prefix(self, cutoff: datetime.datetime,
                       is_terminal: Callable[[str], bool]) -> List[HistoryEntry]:
        """
        Move the longest prefix of entries older than ``cutoff`` whose request
        is terminal into the archive table. Returns the archived entries.
        """
        archived: List[HistoryEntry] = []
        rows = self.session.scalars(select(HistoryRecord).order_by(HistoryRecord.position)).all()
        for row in rows:
            if row.timestamp >= cutoff or not is_terminal(row.request_id):
                break
            archived.append(HistoryEntry.model_validate(row))
        if not archived:
            return archived

        for entry, row in zip(archived, rows):
            self.session.add(ArchivedHistoryRecord(**entry.model_dump()))
            self.session.delete(row)
        positions = [e.position for e in archived]
        self.index.drop_positions(positions)
        self.session.flush()
        return archived
