"""
Slot catalog: bulk generation of bookable slots, the availability listing, and
virtual slots derived from a service's recurring weekly schedule.
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from flask import current_app
from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.constants import ACTIVE_BOOKING_STATUSES, SERVICE_TYPES
from models.schedule import ScheduleEntry, ScheduleTemplate
from models.slot import Slot
from scheduling.cache import availability_cache
from scheduling.conflicts import TimeRange, find_conflicts
from scheduling.errors import FormatError
from scheduling.timeutils import MINUTES_PER_DAY, minutes_of, normalize_time, parse_date, service_now, to_minutes, to_time

logger = logging.getLogger(__name__)

MIN_SLOT_DURATION = 15


@dataclass
class GenerationResult:
    created: int = 0
    skipped: int = 0
    errors: int = 0
    created_slots: List[str] = field(default_factory=list)
    skipped_slots: List[str] = field(default_factory=list)
    error_slots: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "created": self.created,
            "skipped": self.skipped,
            "errors": self.errors,
            "details": {
                "created_slots": self.created_slots,
                "skipped_slots": self.skipped_slots,
                "error_slots": self.error_slots,
            },
        }


@dataclass
class DaySlots:
    date: date
    slots: List[dict]

    @property
    def times(self) -> List[str]:
        return [s["time"] for s in self.slots]

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "times": self.times,
            "available": len(self.slots),
            "slots": self.slots,
        }


def validate_service_type(service_type: str) -> str:
    if service_type not in SERVICE_TYPES:
        raise FormatError(f"Unknown service_type {service_type!r}", allowed=list(SERVICE_TYPES))
    return service_type


def resource_for(service_type: str) -> str:
    mapping = current_app.config.get("RESOURCE_BY_SERVICE") or {}
    return mapping.get(service_type, service_type)


def find_slot(slot_date: date, slot_time: str, service_type: str) -> Optional[Slot]:
    return Slot.query.filter_by(date=slot_date, time=slot_time, service_type=service_type).first()


def active_entries(service_type: str) -> List[ScheduleEntry]:
    return (
        ScheduleEntry.query
        .join(ScheduleTemplate, ScheduleEntry.template_id == ScheduleTemplate.id)
        .filter(
            ScheduleTemplate.service_type == service_type,
            ScheduleTemplate.is_active.is_(True),
            ScheduleEntry.is_active.is_(True),
        )
        .order_by(ScheduleEntry.day_of_week.asc(), ScheduleEntry.start_time.asc())
        .all()
    )


def schedule_entry_for(service_type: str, day: date, clock: str) -> Optional[ScheduleEntry]:
    for entry in active_entries(service_type):
        if entry.day_of_week == day.weekday() and entry.start_time == clock:
            return entry
    return None


def commitments_on(resource: str, day: date, exclude_booking_id=None) -> List[TimeRange]:
    """
    Non-cancelled bookings on `resource` that touch `day`, as minute ranges
    relative to its midnight. Neighbouring days are included so a booking
    running past midnight still blocks the early hours of the next day (its
    start is negative) and late candidates see the next morning (start >= 1440).
    """
    q = Booking.query.filter(
        Booking.resource == resource,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.start_at >= _midnight(day - timedelta(days=1)),
        Booking.start_at < _midnight(day + timedelta(days=2)),
    )
    if exclude_booking_id is not None:
        q = q.filter(Booking.id != exclude_booking_id)

    out = []
    for b in q.order_by(Booking.start_at.asc()).all():
        begin = (b.start_at.date() - day).days * MINUTES_PER_DAY + minutes_of(b.start_at)
        end = begin + b.duration
        out.append(TimeRange(
            day=day,
            start=begin,
            end=end,
            resource=b.resource,
            label=f"{b.service_type} #{b.id}",
        ))
    return out


def weekly_commitments(resource: str, day_of_week: int, exclude_entry_id=None) -> List[TimeRange]:
    """Active weekly entries of every service sharing `resource` on a weekday."""
    out = []
    for service_type in SERVICE_TYPES:
        if resource_for(service_type) != resource:
            continue
        for entry in active_entries(service_type):
            if entry.day_of_week != day_of_week or entry.id == exclude_entry_id:
                continue
            out.append(TimeRange.from_duration(
                day_of_week, entry.start_time, entry.duration,
                resource=resource, label=f"{service_type} {entry.start_time}",
            ))
    return out


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def _days(start: date, end: date):
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def generate(service_type: str, start_date, end_date, times=None, price=None, duration=None,
             skip_weekends: bool = True, skip_existing: bool = True, weekdays=None) -> GenerationResult:
    """
    Insert one Slot per (day, time). Every row commits on its own so a failing
    row (e.g. a uniqueness race with another instance) is counted as an error
    and the rest of the batch still goes through.
    """
    validate_service_type(service_type)
    start = parse_date(start_date)
    end = parse_date(end_date)
    if start > end:
        raise FormatError("start_date must be before or equal to end_date")

    if duration is not None and int(duration) < MIN_SLOT_DURATION:
        raise FormatError(f"duration must be at least {MIN_SLOT_DURATION} minutes")
    if price is not None and int(price) < 0:
        raise FormatError("price must be >= 0")

    allowed_weekdays = set(int(d) for d in weekdays) if weekdays else None

    # time template: explicit list, or the service's weekly schedule per weekday
    by_weekday: Dict[int, List[tuple]] = {}
    if times:
        fixed = [(normalize_time(t), None, None) for t in times]
        by_weekday = {wd: fixed for wd in range(7)}
    else:
        for entry in active_entries(service_type):
            by_weekday.setdefault(entry.day_of_week, []).append((entry.start_time, entry.duration, entry.price))
        if not by_weekday:
            raise FormatError(f"No times given and no weekly schedule for {service_type}")

    default_duration = current_app.config.get("DEFAULT_SLOT_DURATION", 60)
    result = GenerationResult()

    for day in _days(start, end):
        if skip_weekends and day.weekday() >= 5:
            continue
        if allowed_weekdays is not None and day.weekday() not in allowed_weekdays:
            continue

        for clock, entry_duration, entry_price in by_weekday.get(day.weekday(), []):
            label = f"{day.isoformat()} {clock}"

            if skip_existing and find_slot(day, clock, service_type):
                result.skipped += 1
                result.skipped_slots.append(label)
                continue

            slot = Slot(
                date=day,
                time=clock,
                service_type=service_type,
                duration=int(duration if duration is not None else (entry_duration or default_duration)),
                price=int(price if price is not None else (entry_price or 0)),
                available=True,
            )
            db.session.add(slot)
            try:
                db.session.commit()
            except IntegrityError:
                db.session.rollback()
                logger.warning("Slot %s for %s could not be created", label, service_type)
                result.errors += 1
                result.error_slots.append(label)
                continue

            result.created += 1
            result.created_slots.append(label)

    if result.created:
        availability_cache.invalidate(service_type)

    logger.info(
        "Generated slots for %s: created=%s skipped=%s errors=%s",
        service_type, result.created, result.skipped, result.errors,
    )
    return result


def _available_rows(service_type: str, scope_date: date) -> List[dict]:
    # pinned before the query so a concurrent invalidation wins over this write
    version = availability_cache.version(service_type)
    cached = availability_cache.get(service_type, scope_date.isoformat(), version)
    if cached is not None:
        return cached

    rows = (
        Slot.query
        .filter(
            Slot.service_type == service_type,
            Slot.available.is_(True),
            Slot.date >= scope_date,
        )
        .order_by(Slot.date.asc(), Slot.time.asc())
        .all()
    )
    out = [
        {"id": s.id, "date": s.date.isoformat(), "time": s.time, "duration": s.duration, "price": s.price}
        for s in rows
    ]
    availability_cache.set(service_type, scope_date.isoformat(), out, version)
    return out


def group_by_date(rows: List[dict]) -> List[DaySlots]:
    groups: List[DaySlots] = []
    for row in rows:
        day = parse_date(row["date"])
        if not groups or groups[-1].date != day:
            groups.append(DaySlots(date=day, slots=[]))
        groups[-1].slots.append(row)
    return groups


def list_available(service_type: str, from_date=None, limit: int = 50, now=None) -> List[DaySlots]:
    """
    Free slots whose start is strictly after now + LISTING_BUFFER_MINUTES,
    ordered by date then time and grouped by date. `now` is service-local.
    """
    validate_service_type(service_type)
    now = now or service_now()
    buffer_minutes = current_app.config.get("LISTING_BUFFER_MINUTES", 5)
    cutoff = now + timedelta(minutes=buffer_minutes)
    cutoff_day, cutoff_time = cutoff.date(), to_time(minutes_of(cutoff))

    scope = cutoff_day
    if from_date:
        scope = max(scope, parse_date(from_date))

    rows = [
        r for r in _available_rows(service_type, scope)
        if r["date"] > cutoff_day.isoformat()
        or (r["date"] == cutoff_day.isoformat() and r["time"] > cutoff_time)
    ]
    if limit:
        rows = rows[:limit]
    return group_by_date(rows)


def derive_from_schedule(service_type: str, start_date=None, days: int = 15, now=None) -> List[DaySlots]:
    """
    Virtual slots from the weekly template for the next `days` days, minus the
    times that would conflict with existing commitments on the same resource.
    Nothing is persisted.
    """
    validate_service_type(service_type)
    now = now or service_now()
    start = parse_date(start_date) if start_date else now.date()
    grace = current_app.config.get("GRACE_MINUTES", 30)
    buffer_minutes = current_app.config.get("LISTING_BUFFER_MINUTES", 5)
    cutoff = now + timedelta(minutes=buffer_minutes)
    resource = resource_for(service_type)

    entries = active_entries(service_type)
    out: List[DaySlots] = []
    for offset in range(days):
        day = start + timedelta(days=offset)
        todays = [e for e in entries if e.day_of_week == day.weekday()]
        if not todays:
            continue
        existing = commitments_on(resource, day)
        free = []
        for entry in todays:
            begin = to_minutes(entry.start_time)
            if _midnight(day) + timedelta(minutes=begin) <= cutoff:
                continue
            candidate = TimeRange(day=day, start=begin, end=begin + entry.duration, resource=resource)
            if find_conflicts(candidate, existing, grace):
                continue
            free.append({
                "id": None,
                "date": day.isoformat(),
                "time": entry.start_time,
                "duration": entry.duration,
                "price": entry.price,
            })
        if free:
            out.append(DaySlots(date=day, slots=free))
    return out


def purge_slots(service_type: str, start_date, end_date) -> int:
    """Delete unreserved slots in a date range. Reserved slots are never purged."""
    validate_service_type(service_type)
    start = parse_date(start_date)
    end = parse_date(end_date)
    deleted = (
        Slot.query
        .filter(
            Slot.service_type == service_type,
            Slot.available.is_(True),
            Slot.booking_id.is_(None),
            and_(Slot.date >= start, Slot.date <= end),
        )
        .delete(synchronize_session=False)
    )
    db.session.commit()
    if deleted:
        availability_cache.invalidate(service_type)
    logger.info("Purged %s unreserved %s slots between %s and %s", deleted, service_type, start, end)
    return deleted
