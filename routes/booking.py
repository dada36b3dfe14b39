from flask import Blueprint, request, jsonify, current_app, g

from models.booking import Booking
from models.constants import BOOKING_CANCELLED
from scheduling import catalog, reservations
from scheduling.errors import FormatError
from scheduling.reservations import BookingRequest
from scheduling.timeutils import service_now
from security.rbac import require_roles
from utils.auth_context import login_required
from utils.audit import log_event

booking_bp = Blueprint("booking", __name__)

def _int_field(data: dict, key: str, default=None):
    value = data.get(key, default)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FormatError(f"{key} must be an integer") from None

def _bool_field(data: dict, key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise FormatError(f"{key} must be true or false")
    return value

# ---------- STAFF/ADMIN: generate slots in bulk ----------
@booking_bp.post("/slots/generate")
@require_roles("ADMIN", "STAFF")
def generate_slots():
    data = request.get_json(silent=True) or {}
    service_type = (data.get("service_type") or "").strip()
    start_date = data.get("start_date")
    end_date = data.get("end_date")
    times = data.get("times")

    if not service_type or not start_date or not end_date:
        return jsonify(error="service_type, start_date, end_date are required"), 400
    if times is not None and (not isinstance(times, list) or not times):
        return jsonify(error="times must be a non-empty list of HH:MM"), 400

    weekdays = data.get("weekdays")
    if weekdays is not None and not isinstance(weekdays, list):
        return jsonify(error="weekdays must be a list of 0-6 (Monday = 0)"), 400

    result = catalog.generate(
        service_type,
        start_date,
        end_date,
        times=times,
        price=_int_field(data, "price"),
        duration=_int_field(data, "duration"),
        skip_weekends=_bool_field(data, "skip_weekends", True),
        skip_existing=_bool_field(data, "skip_existing", True),
        weekdays=weekdays,
    )

    log_event("SLOT_GENERATE", user_id=g.user.id, entity="slot",
              metadata={"service_type": service_type, "created": result.created,
                        "skipped": result.skipped, "errors": result.errors})
    return jsonify(success=True, **result.to_dict()), 200


# ---------- USERS: view free slots ----------
@booking_bp.get("/slots")
@login_required
def list_slots():
    service_type = request.args.get("service_type", "ConsultorioFinanciero")
    from_date = request.args.get("from")
    limit = request.args.get("limit", type=int) or 50
    limit = max(1, min(limit, 500))

    days = catalog.list_available(service_type, from_date=from_date, limit=limit)
    return jsonify(
        service_type=service_type,
        days=[d.to_dict() for d in days],
        total=sum(len(d.slots) for d in days),
        day_count=len(days),
    ), 200


# ---------- STAFF/ADMIN: purge unreserved slots ----------
@booking_bp.post("/slots/purge")
@require_roles("ADMIN")
def purge_slots():
    data = request.get_json(silent=True) or {}
    service_type = (data.get("service_type") or "").strip()
    if not service_type or not data.get("start_date") or not data.get("end_date"):
        return jsonify(error="service_type, start_date, end_date are required"), 400

    deleted = catalog.purge_slots(service_type, data["start_date"], data["end_date"])
    log_event("SLOT_PURGE", user_id=g.user.id, entity="slot",
              metadata={"service_type": service_type, "deleted": deleted})
    return jsonify(deleted=deleted), 200


# ---------- STAFF/ADMIN: force-release a slot ----------
@booking_bp.post("/slots/<int:slot_id>/release")
@require_roles("ADMIN", "STAFF")
def release_slot(slot_id: int):
    slot = reservations.release(slot_id)
    log_event("SLOT_RELEASE", user_id=g.user.id, entity="slot", entity_id=slot_id)
    return jsonify(slot.to_dict()), 200


# ---------- USERS: pre-check a time ----------
@booking_bp.post("/bookings/check")
@login_required
def check_booking():
    data = request.get_json(silent=True) or {}
    req = BookingRequest.from_payload(data, user_id=g.user.id)
    minutes = req.duration or current_app.config.get("DEFAULT_SLOT_DURATION", 60)
    report = reservations.check_conflicts(req.service_type, req.start, minutes)
    return jsonify(report.to_dict()), 200


# ---------- USERS: book (DOUBLE-BOOKING SAFE) ----------
@booking_bp.post("/bookings")
@login_required
def create_booking():
    data = request.get_json(silent=True) or {}
    req = BookingRequest.from_payload(data, user_id=g.user.id)

    booking = reservations.create_booking(req)

    log_event("BOOKING_CREATE", user_id=g.user.id, entity="booking", entity_id=booking.id,
              metadata={"service_type": booking.service_type, "start": booking.start_at.isoformat()})
    return jsonify(
        id=booking.id,
        status=booking.status,
        start=booking.start_at.isoformat(),
        end=booking.end_at.isoformat(),
        booking=booking.to_dict(),
    ), 201


# ---------- USERS: cancel booking (policy window) ----------
@booking_bp.post("/bookings/<int:booking_id>/cancel")
@login_required
def cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or None

    booking = Booking.query.get(booking_id)
    if not booking or booking.user_id != g.user.id:
        return jsonify(error="Booking not found"), 404

    if booking.status == BOOKING_CANCELLED:
        return jsonify(message="Cancelled", booking=booking.to_dict()), 200

    cutoff_hours = current_app.config.get("CANCEL_CUTOFF_HOURS", 12)
    if (booking.start_at - service_now()).total_seconds() < cutoff_hours * 3600:
        return jsonify(error=f"Cancellation not allowed within {cutoff_hours} hours of start"), 403

    booking = reservations.cancel_booking(booking_id, reason=reason)

    log_event("BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"reason": reason})
    return jsonify(message="Cancelled", booking=booking.to_dict()), 200

# ---------- USERS: view my bookings ----------
@booking_bp.get("/bookings/me")
@login_required
def my_bookings():
    # optional: status filter
    status = request.args.get("status")  # pending/confirmed/cancelled
    q = Booking.query.filter_by(user_id=g.user.id)
    if status:
        q = q.filter_by(status=status)

    rows = q.order_by(Booking.start_at.desc()).limit(50).all()
    return jsonify([b.to_dict() for b in rows]), 200


# ---------- STAFF/ADMIN: list all bookings ----------
@booking_bp.get("/bookings")
@require_roles("ADMIN", "STAFF")
def list_all_bookings():
    status = request.args.get("status")
    service_type = request.args.get("service_type")
    q = Booking.query
    if status:
        q = q.filter_by(status=status)
    if service_type:
        q = q.filter_by(service_type=service_type)

    rows = q.order_by(Booking.start_at.desc()).limit(200).all()
    return jsonify([b.to_dict() for b in rows]), 200

# ---------- ADMIN: cancel any booking ----------
@booking_bp.post("/bookings/<int:booking_id>/admin_cancel")
@require_roles("ADMIN")
def admin_cancel_booking(booking_id: int):
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip() or "Admin cancellation"

    booking = reservations.cancel_booking(booking_id, reason=reason)

    log_event("ADMIN_BOOKING_CANCEL", user_id=g.user.id, entity="booking", entity_id=booking.id, metadata={"reason": reason})
    return jsonify(message="Cancelled by admin", booking=booking.to_dict()), 200


# ---------- ADMIN: confirm a pending booking ----------
@booking_bp.post("/bookings/<int:booking_id>/confirm")
@require_roles("ADMIN", "STAFF")
def confirm_booking(booking_id: int):
    booking = reservations.confirm_booking(booking_id)
    log_event("BOOKING_CONFIRM", user_id=g.user.id, entity="booking", entity_id=booking.id)
    return jsonify(booking.to_dict()), 200


# ---------- calendar integration: attach the meeting link ----------
@booking_bp.post("/bookings/<int:booking_id>/meeting-link")
@require_roles("ADMIN", "SYSTEM")
def set_meeting_link(booking_id: int):
    data = request.get_json(silent=True) or {}
    booking = reservations.set_meeting_link(booking_id, data.get("meeting_link"))
    log_event("BOOKING_MEETING_LINK", user_id=g.user.id, entity="booking", entity_id=booking.id)
    return jsonify(booking.to_dict()), 200


# ---------- ADMIN: give back slots held by unpaid bookings ----------
@booking_bp.post("/bookings/release-expired-holds")
@require_roles("ADMIN")
def release_expired_holds():
    expired = reservations.release_expired_holds()
    log_event("BOOKING_HOLDS_EXPIRED", user_id=g.user.id, entity="booking",
              metadata={"booking_ids": expired})
    return jsonify(released=len(expired), booking_ids=expired), 200
