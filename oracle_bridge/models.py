# oracle_bridge/models.py
from sqlalchemy import Boolean, Column, Integer, String, DateTime, Text, LargeBinary
import datetime

from oracle_bridge.db import Base


def utcnow() -> datetime.datetime:
    # Naive UTC; SQLite drops tzinfo anyway
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class OracleRequest(Base):
    __tablename__ = "oracle_requests"

    request_id = Column(String(128), primary_key=True)
    fulfilled = Column(Boolean, nullable=False, default=False)
    stale = Column(Boolean, nullable=False, default=False)
    response = Column(LargeBinary, nullable=False, default=b"")
    err = Column(LargeBinary, nullable=False, default=b"")
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    fulfilled_at = Column(DateTime, nullable=True)


class HistoryRecord(Base):
    __tablename__ = "history_entries"

    position = Column(Integer, primary_key=True, autoincrement=False)
    request_id = Column(String(128), nullable=False, index=True)
    originator = Column(String(255), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=utcnow)
    lookup_key = Column(String(255), nullable=False, index=True)
    secondary_key = Column(Text, nullable=False, default="")
    data = Column(Text, nullable=False, default="")


class ArchivedHistoryRecord(Base):
    __tablename__ = "archived_history_entries"

    position = Column(Integer, primary_key=True, autoincrement=False)
    request_id = Column(String(128), nullable=False, index=True)
    originator = Column(String(255), nullable=False)
    timestamp = Column(DateTime, nullable=False)
    lookup_key = Column(String(255), nullable=False, index=True)
    secondary_key = Column(Text, nullable=False, default="")
    data = Column(Text, nullable=False, default="")
    archived_at = Column(DateTime, nullable=False, default=utcnow)


class IndexRecord(Base):
    __tablename__ = "history_index"

    lookup_key = Column(String(255), primary_key=True)
    position = Column(Integer, nullable=False, index=True)


class CorrelationRecord(Base):
    __tablename__ = "request_correlations"

    request_id = Column(String(128), primary_key=True)
    lookup_key = Column(String(255), nullable=False)
    position = Column(Integer, nullable=False)
