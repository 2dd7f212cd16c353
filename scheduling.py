"""
Schedule conflict checking.

Intervals are half-open, [start, end). The scan follows input order and
stops at the first overlap; it never sorts or enumerates all conflicts.
"""
from datetime import datetime, timezone
from typing import Iterable, Optional

from pydantic import BaseModel


class Interval(BaseModel):
    start: datetime
    end: datetime
    label: Optional[str] = None


class ConflictResult(BaseModel):
    has_conflict: bool
    conflict_details: Optional[str] = None
    conflicting: Optional[Interval] = None


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    return as_utc(a_start) < as_utc(b_end) and as_utc(a_end) > as_utc(b_start)


def find_conflict(proposed: Interval, existing: Iterable[Interval]) -> Optional[Interval]:
    # A zero-length proposal (start == end) conflicts only when it falls
    # strictly inside an existing interval, never on its edges.
    for interval in existing:
        if overlaps(proposed.start, proposed.end, interval.start, interval.end):
            return interval
    return None


def describe_conflict(interval: Interval) -> str:
    span = f"from {interval.start.isoformat()} to {interval.end.isoformat()}"
    if interval.label:
        return f"The proposed schedule conflicts with '{interval.label}' {span}."
    return f"The proposed schedule conflicts with an existing schedule {span}."


def check_conflict(proposed: Interval, existing: Iterable[Interval]) -> ConflictResult:
    hit = find_conflict(proposed, existing)
    if hit is None:
        return ConflictResult(has_conflict=False)
    return ConflictResult(has_conflict=True, conflict_details=describe_conflict(hit), conflicting=hit)
