"""Half-open time interval helpers.

All windows are ``[start, end)``: a lesson ending at 10:00 does not touch a
meeting starting at 10:00.
"""

from datetime import datetime


def overlaps(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> bool:
    """True iff ``[start1, end1)`` and ``[start2, end2)`` share any instant."""
    return start1 < end2 and start2 < end1


def overlap_minutes(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> float:
    if not overlaps(start1, end1, start2, end2):
        return 0.0
    return (min(end1, end2) - max(start1, start2)).total_seconds() / 60


def overlap_percentage(start1: datetime, end1: datetime, start2: datetime, end2: datetime) -> int:
    """Share of the first window covered by the second, rounded to a whole percent."""
    duration = (end1 - start1).total_seconds() / 60
    if duration <= 0:
        return 0
    return round(overlap_minutes(start1, end1, start2, end2) / duration * 100)
