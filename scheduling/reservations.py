"""
Reservation manager: the only code that mutates Slot reservation state and
Booking status.

The free -> reserved transition of a Slot is a single conditional UPDATE
(compare-and-swap on `available`), never a read followed by a write, so any
number of server instances can share the store. The conflict check against
other bookings is read-then-decide and therefore best-effort; the Slot row is
the serialization point.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional
from urllib.parse import urlparse

from flask import current_app
from sqlalchemy.exc import IntegrityError

from models import db
from models.booking import Booking
from models.constants import BOOKING_CANCELLED, BOOKING_CONFIRMED, BOOKING_PENDING, booking_type_for
from models.slot import Slot
from scheduling import catalog
from scheduling.cache import availability_cache
from scheduling.conflicts import ConflictReport, TimeRange, validate
from scheduling.errors import BookingError, ConflictError, DuplicateKeyError, FormatError, NotFoundError
from scheduling.timeutils import minutes_of, normalize_time, parse_date, parse_datetime, service_now, to_time, utcnow

logger = logging.getLogger(__name__)

MIN_BOOKING_DURATION = 15
MAX_BOOKING_DURATION = 300


@dataclass
class BookingRequest:
    user_id: str
    service_type: str
    start: datetime  # service-local wall clock
    duration: Optional[int] = None
    notes: Optional[str] = None

    @classmethod
    def from_payload(cls, data: dict, user_id: str) -> "BookingRequest":
        service_type = (data.get("service_type") or "").strip()
        catalog.validate_service_type(service_type)

        start_raw = data.get("start") or data.get("start_time")
        if not start_raw:
            raise FormatError("start is required (ISO e.g. 2026-01-20T18:00:00)")
        start = parse_datetime(start_raw)

        duration = data.get("duration")
        if duration is not None:
            try:
                duration = int(duration)
            except (TypeError, ValueError):
                raise FormatError("duration must be an integer number of minutes") from None

        notes = (data.get("notes") or "").strip() or None
        if notes and len(notes) > 500:
            raise FormatError("notes must be at most 500 characters")

        return cls(user_id=user_id, service_type=service_type, start=start,
                   duration=duration, notes=notes)

    @property
    def slot_time(self) -> str:
        return to_time(minutes_of(self.start))


def _grace() -> int:
    return current_app.config.get("GRACE_MINUTES", 30)


def _check_duration(minutes: int):
    if minutes < MIN_BOOKING_DURATION or minutes > MAX_BOOKING_DURATION:
        raise FormatError(f"duration must be between {MIN_BOOKING_DURATION} and {MAX_BOOKING_DURATION} minutes")


def check_conflicts(service_type: str, start: datetime, minutes: int, exclude_booking_id=None) -> ConflictReport:
    """Grace-aware conflict report for a candidate against bookings on its resource that touch its day."""
    resource = catalog.resource_for(service_type)
    candidate = TimeRange(
        day=start.date(),
        start=minutes_of(start),
        end=minutes_of(start) + minutes,
        resource=resource,
        label=service_type,
    )
    existing = catalog.commitments_on(resource, start.date(), exclude_booking_id=exclude_booking_id)
    cfg = current_app.config
    return validate(
        candidate,
        existing,
        grace_minutes=_grace(),
        work_start=cfg.get("WORK_START", "08:00"),
        work_end=cfg.get("WORK_END", "20:00"),
        limit=cfg.get("SUGGESTION_LIMIT", 5),
        step_minutes=cfg.get("SUGGESTION_STEP_MINUTES", 30),
    )


def reserve(slot_date, slot_time: str, service_type: str, user_id: str, booking_id: int,
            commit: bool = True) -> Slot:
    """
    Atomically flip a Slot from available to reserved. Exactly one of any
    number of concurrent callers wins; the rest get ConflictError.
    """
    slot_date = parse_date(slot_date)
    slot_time = normalize_time(slot_time)
    if not user_id or booking_id is None:
        raise FormatError("user_id and booking_id are required to reserve a slot")

    now = utcnow()
    try:
        updated = (
            Slot.query
            .filter_by(date=slot_date, time=slot_time, service_type=service_type, available=True)
            .update(
                {
                    Slot.available: False,
                    Slot.reserved_by: user_id,
                    Slot.reserved_at: now,
                    Slot.booking_id: booking_id,
                    Slot.updated_at: now,
                },
                synchronize_session=False,
            )
        )
    except IntegrityError:
        db.session.rollback()
        # uq_slot_booking_once: this booking already holds another slot
        raise DuplicateKeyError(f"Booking {booking_id} already holds a slot") from None

    if updated == 0:
        slot = catalog.find_slot(slot_date, slot_time, service_type)
        if slot is None:
            raise NotFoundError(f"No slot on {slot_date.isoformat()} at {slot_time} for {service_type}")
        raise ConflictError("Slot unavailable", slot_id=slot.id)

    if commit:
        db.session.commit()
        availability_cache.invalidate(service_type)

    slot = catalog.find_slot(slot_date, slot_time, service_type)
    db.session.refresh(slot)
    logger.info("Reserved slot %s (%s %s %s) for booking %s", slot.id, slot_date, slot_time, service_type, booking_id)
    return slot


def release(slot_id: int, commit: bool = True) -> Slot:
    slot = Slot.query.get(slot_id)
    if not slot:
        raise NotFoundError("Slot not found")

    released = (
        Slot.query
        .filter_by(id=slot_id, available=False)
        .update(
            {
                Slot.available: True,
                Slot.reserved_by: None,
                Slot.reserved_at: None,
                Slot.booking_id: None,
                Slot.updated_at: utcnow(),
            },
            synchronize_session=False,
        )
    )

    if commit:
        db.session.commit()
        if released:
            availability_cache.invalidate(slot.service_type)

    db.session.refresh(slot)
    if released:
        logger.info("Released slot %s", slot_id)
    return slot


def create_booking(req: BookingRequest, now: Optional[datetime] = None) -> Booking:
    """
    Validate, check conflicts, then insert the booking and reserve its slot in
    one transaction. A lost reservation race leaves no booking behind.
    """
    now = now or service_now()
    if req.start <= now:
        raise FormatError("Cannot book past/started slots")

    slot_day = req.start.date()
    slot_time = req.slot_time
    slot = catalog.find_slot(slot_day, slot_time, req.service_type)
    entry = None
    if slot is None:
        # non-slot-backed bookings must still match the weekly schedule
        entry = catalog.schedule_entry_for(req.service_type, slot_day, slot_time)
        if entry is None:
            raise NotFoundError(f"No bookable slot on {slot_day.isoformat()} at {slot_time} for {req.service_type}")
    elif not slot.available:
        raise ConflictError("Slot unavailable", slot_id=slot.id)

    minutes = req.duration or (slot.duration if slot else entry.duration)
    _check_duration(minutes)
    # priced by the slot or schedule entry
    price = slot.price if slot else entry.price

    report = check_conflicts(req.service_type, req.start, minutes)
    if not report.is_valid:
        raise ConflictError(report.message, conflicts=report.conflicts, suggestions=report.suggestions)

    booking = Booking(
        user_id=req.user_id,
        type=booking_type_for(req.service_type),
        service_type=req.service_type,
        resource=catalog.resource_for(req.service_type),
        start_at=req.start,
        end_at=req.start + timedelta(minutes=minutes),
        duration=minutes,
        status=BOOKING_PENDING,
        price=price,
        notes=req.notes,
    )
    db.session.add(booking)
    db.session.flush()

    if slot is not None:
        try:
            reserve(slot_day, slot_time, req.service_type, req.user_id, booking.id, commit=False)
        except BookingError:
            db.session.rollback()
            raise

    db.session.commit()
    if slot is not None:
        availability_cache.invalidate(req.service_type)

    logger.info("Created booking %s for %s at %s", booking.id, req.user_id, req.start.isoformat())
    return booking


def _get_booking(booking_id: int) -> Booking:
    booking = Booking.query.get(booking_id)
    if not booking:
        raise NotFoundError("Booking not found")
    return booking


def cancel_booking(booking_id: int, reason: Optional[str] = None) -> Booking:
    """Cancel and release the slot. Cancelling a cancelled booking is a no-op."""
    booking = _get_booking(booking_id)
    if booking.status == BOOKING_CANCELLED:
        return booking

    changed = (
        Booking.query
        .filter(Booking.id == booking_id, Booking.status != BOOKING_CANCELLED)
        .update(
            {
                Booking.status: BOOKING_CANCELLED,
                Booking.cancelled_at: utcnow(),
                Booking.cancel_reason: reason[:120] if reason else None,
            },
            synchronize_session=False,
        )
    )
    if changed == 0:
        # lost to a concurrent cancel
        db.session.rollback()
        return _get_booking(booking_id)

    slot = Slot.query.filter_by(booking_id=booking_id).first()
    if slot:
        release(slot.id, commit=False)

    db.session.commit()
    if slot:
        availability_cache.invalidate(slot.service_type)

    db.session.refresh(booking)
    logger.info("Cancelled booking %s", booking_id)
    return booking


def release_expired_holds(now: Optional[datetime] = None) -> List[int]:
    """
    Cancel pending bookings older than PENDING_HOLD_MINUTES and free their
    slots, all in one transaction. `now` is naive UTC like `created_at`.
    Returns the ids of the cancelled bookings.
    """
    hold_minutes = current_app.config.get("PENDING_HOLD_MINUTES", 30)
    if not hold_minutes:
        return []
    now = now or utcnow()
    cutoff = now - timedelta(minutes=hold_minutes)

    stale = (
        Booking.query
        .filter(Booking.status == BOOKING_PENDING, Booking.created_at < cutoff)
        .order_by(Booking.id.asc())
        .all()
    )

    expired, services = [], set()
    for booking in stale:
        changed = (
            Booking.query
            .filter_by(id=booking.id, status=BOOKING_PENDING)
            .update(
                {
                    Booking.status: BOOKING_CANCELLED,
                    Booking.cancelled_at: now,
                    Booking.cancel_reason: "Reservation hold expired",
                },
                synchronize_session=False,
            )
        )
        if not changed:
            # confirmed or cancelled since the scan
            continue
        slot = Slot.query.filter_by(booking_id=booking.id).first()
        if slot:
            release(slot.id, commit=False)
            services.add(slot.service_type)
        expired.append(booking.id)

    db.session.commit()
    for service_type in services:
        availability_cache.invalidate(service_type)

    if expired:
        logger.info("Released %s expired reservation holds", len(expired))
    return expired


def confirm_booking(booking_id: int) -> Booking:
    booking = _get_booking(booking_id)
    if booking.status == BOOKING_CONFIRMED:
        return booking
    if booking.status == BOOKING_CANCELLED:
        raise ConflictError("Booking was cancelled and cannot be confirmed")

    changed = (
        Booking.query
        .filter_by(id=booking_id, status=BOOKING_PENDING)
        .update({Booking.status: BOOKING_CONFIRMED, Booking.confirmed_at: utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    db.session.refresh(booking)
    if not changed and booking.status == BOOKING_CANCELLED:
        raise ConflictError("Booking was cancelled and cannot be confirmed")
    return booking


def set_meeting_link(booking_id: int, link: str) -> Booking:
    link = (link or "").strip()
    parts = urlparse(link)
    if parts.scheme not in ("http", "https") or not parts.netloc or len(link) > 500:
        raise FormatError("meeting_link must be an http(s) URL")

    booking = _get_booking(booking_id)
    booking.meeting_link = link
    db.session.commit()
    return booking
