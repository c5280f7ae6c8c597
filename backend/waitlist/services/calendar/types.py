"""Normalized results of calendar calls. Same shape regardless of provider."""
from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class BusyInterval:
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and start < self.end


@dataclass(frozen=True)
class FreeBusyResult:
    """Outcome of one free/busy check over [window_start, window_end)."""
    free: bool
    busy: list[BusyInterval] = field(default_factory=list)


@dataclass(frozen=True)
class TokenSet:
    """Tokens returned by code exchange or refresh. refresh_token is None on refresh unless rotated."""
    access_token: str
    expires_in: int
    refresh_token: str | None = None


@dataclass(frozen=True)
class CalendarInfo:
    id: str
    summary: str
    primary: bool = False
