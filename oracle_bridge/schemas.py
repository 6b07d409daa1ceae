# oracle_bridge/schemas.py
from typing import List, Optional
from pydantic import BaseModel, ConfigDict
from datetime import datetime


class RequestStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    exists: bool = False
    fulfilled: bool = False
    response: bytes = b""
    err: bytes = b""
    # Sent for longer than the staleness threshold without a callback
    stale: bool = False

    @property
    def state(self) -> str:
        if not self.exists:
            return "unknown"
        if self.fulfilled:
            return "fulfilled"
        return "stale" if self.stale else "sent"

    def to_api(self) -> dict:
        return {
            "exists": self.exists,
            "fulfilled": self.fulfilled,
            "stale": self.stale,
            "state": self.state,
            "response": self.response.decode("utf-8", errors="replace"),
            "err": self.err.decode("utf-8", errors="replace"),
        }


class HistoryEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    position: int
    request_id: str
    originator: str
    timestamp: datetime
    lookup_key: str
    secondary_key: str = ""
    data: str = ""


class LastRequest(BaseModel):
    """Read-only snapshot of the most recent sent or fulfilled request."""

    request_id: str
    originator: str
    lookup_key: str
    secondary_key: str
    data: str
    timestamp: datetime
    fulfilled: bool
    response: str
    err: str


class Page(BaseModel):
    entries: List[HistoryEntry]
    first_position: int
    length: int
    truncated: bool = False
    next_start: Optional[int] = None
