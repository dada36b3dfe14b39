"""
Overlap detection between a candidate time range and existing commitments.

Ranges are expressed in minutes since midnight of a given day. A symmetric
grace buffer is added around the *existing* range before testing, so two
commitments on the same resource always keep at least `grace` minutes apart.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, List, Optional

from scheduling.timeutils import MINUTES_PER_DAY, to_minutes, to_time

DEFAULT_GRACE_MINUTES = 30
DEFAULT_SUGGESTION_LIMIT = 5


def _clock(minutes: int) -> str:
    # ranges borrowed from a neighbouring day fall outside 0..1439
    return to_time(minutes % MINUTES_PER_DAY)


@dataclass(frozen=True)
class TimeRange:
    day: object  # calendar date, or a weekday number for recurring schedules
    start: int
    end: int
    resource: Optional[str] = None
    label: Optional[str] = field(default=None, compare=False)

    @classmethod
    def from_clock(cls, day: date, start: str, end: str, resource=None, label=None):
        start_m = to_minutes(start)
        end_m = to_minutes(end)
        if end_m < start_m:
            end_m += 24 * 60
        return cls(day=day, start=start_m, end=end_m, resource=resource, label=label)

    @classmethod
    def from_duration(cls, day: date, start: str, minutes: int, resource=None, label=None):
        start_m = to_minutes(start)
        return cls(day=day, start=start_m, end=start_m + minutes, resource=resource, label=label)

    def to_dict(self) -> dict:
        return {
            "date": self.day.isoformat() if hasattr(self.day, "isoformat") else self.day,
            "start": _clock(self.start),
            "end": _clock(self.end),
            "resource": self.resource,
            "label": self.label,
        }

    def describe(self) -> str:
        return f"{self.label or self.resource or 'booking'} ({_clock(self.start)} - {_clock(self.end)})"


@dataclass
class ConflictReport:
    is_valid: bool
    conflicts: List[TimeRange]
    suggestions: List[str]
    message: str

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "suggestions": self.suggestions,
            "message": self.message,
        }


def conflicts(candidate: TimeRange, existing: TimeRange, grace_minutes: int = DEFAULT_GRACE_MINUTES) -> bool:
    if candidate.day != existing.day:
        return False
    # None means "any resource"; callers normally pre-filter by resource
    if candidate.resource and existing.resource and candidate.resource != existing.resource:
        return False

    lo = existing.start - grace_minutes
    hi = existing.end + grace_minutes

    return (
        (lo <= candidate.start < hi)
        or (lo < candidate.end <= hi)
        or (candidate.start <= lo and candidate.end >= hi)
    )


def find_conflicts(candidate: TimeRange, existing_list: Iterable[TimeRange],
                   grace_minutes: int = DEFAULT_GRACE_MINUTES) -> List[TimeRange]:
    return [e for e in existing_list if conflicts(candidate, e, grace_minutes)]


def suggest_slots(day: date, duration_minutes: int, existing_list: Iterable[TimeRange],
                  grace_minutes: int = DEFAULT_GRACE_MINUTES, work_start: str = "08:00",
                  work_end: str = "20:00", limit: Optional[int] = DEFAULT_SUGGESTION_LIMIT,
                  step_minutes: int = 30, resource: Optional[str] = None) -> List[str]:
    """
    Brute-force scan of start times inside the working window, keeping those
    whose induced range has no conflicts and ends by `work_end`.
    """
    same_day = [e for e in existing_list if e.day == day]
    start_m = to_minutes(work_start)
    end_m = to_minutes(work_end)

    out = []
    t = start_m
    while t < end_m:
        if t + duration_minutes <= end_m:
            option = TimeRange(day=day, start=t, end=t + duration_minutes, resource=resource)
            if not find_conflicts(option, same_day, grace_minutes):
                out.append(to_time(t))
                if limit is not None and len(out) >= limit:
                    break
        t += step_minutes
    return out


def validate(candidate: TimeRange, existing_list: Iterable[TimeRange],
             grace_minutes: int = DEFAULT_GRACE_MINUTES, work_start: str = "08:00",
             work_end: str = "20:00", limit: Optional[int] = DEFAULT_SUGGESTION_LIMIT,
             step_minutes: int = 30) -> ConflictReport:
    existing_list = list(existing_list)
    found = find_conflicts(candidate, existing_list, grace_minutes)
    if not found:
        return ConflictReport(is_valid=True, conflicts=[], suggestions=[], message="Time available")

    suggestions = suggest_slots(
        candidate.day,
        candidate.end - candidate.start,
        existing_list,
        grace_minutes=grace_minutes,
        work_start=work_start,
        work_end=work_end,
        limit=limit,
        step_minutes=step_minutes,
        resource=candidate.resource,
    )
    details = ", ".join(c.describe() for c in found)
    return ConflictReport(
        is_valid=False,
        conflicts=found,
        suggestions=suggestions,
        message=f"Conflicts with: {details}. Grace period: {grace_minutes} minutes.",
    )
