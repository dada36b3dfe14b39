from flask import Blueprint, request, jsonify, current_app, g
from sqlalchemy.exc import IntegrityError

from models import db
from models.schedule import ScheduleEntry, ScheduleTemplate
from scheduling import catalog
from scheduling.cache import availability_cache
from scheduling.conflicts import TimeRange, find_conflicts, suggest_slots
from scheduling.errors import ConflictError, FormatError, NotFoundError
from scheduling.timeutils import normalize_time, parse_date
from security.rbac import require_roles
from utils.auth_context import login_required
from utils.audit import log_event

schedules_bp = Blueprint("schedules", __name__, url_prefix="/schedules")


def _template_dict(t: ScheduleTemplate) -> dict:
    return {
        "id": t.id,
        "service_type": t.service_type,
        "title": t.title,
        "is_active": t.is_active,
        "entries": [e.to_dict() for e in t.entries if e.is_active],
    }


@schedules_bp.get("")
@require_roles("ADMIN", "STAFF")
def list_templates():
    templates = ScheduleTemplate.query.order_by(ScheduleTemplate.service_type.asc()).all()
    return jsonify([_template_dict(t) for t in templates]), 200


@schedules_bp.post("")
@require_roles("ADMIN")
def upsert_template():
    data = request.get_json(silent=True) or {}
    service_type = catalog.validate_service_type((data.get("service_type") or "").strip())
    title = (data.get("title") or "").strip() or None

    template = ScheduleTemplate.query.filter_by(service_type=service_type).first()
    created = template is None
    if created:
        template = ScheduleTemplate(service_type=service_type)
        db.session.add(template)
    if title:
        template.title = title[:120]
    if "is_active" in data:
        template.is_active = bool(data["is_active"])

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Schedule already exists"), 409
    availability_cache.invalidate(service_type)

    log_event("SCHEDULE_UPSERT", user_id=g.user.id, entity="schedule", entity_id=template.id)
    return jsonify(_template_dict(template)), 201 if created else 200


@schedules_bp.post("/<service_type>/entries")
@require_roles("ADMIN")
def add_entry(service_type: str):
    catalog.validate_service_type(service_type)
    template = ScheduleTemplate.query.filter_by(service_type=service_type).first()
    if not template:
        raise NotFoundError(f"No schedule for {service_type}")

    data = request.get_json(silent=True) or {}
    try:
        day_of_week = int(data.get("day_of_week"))
        duration = int(data.get("duration") or current_app.config.get("DEFAULT_SLOT_DURATION", 60))
        price = int(data.get("price") or 0)
    except (TypeError, ValueError):
        raise FormatError("day_of_week, duration and price must be integers") from None
    if not 0 <= day_of_week <= 6:
        raise FormatError("day_of_week must be 0-6 (Monday = 0)")
    if duration < catalog.MIN_SLOT_DURATION:
        raise FormatError(f"duration must be at least {catalog.MIN_SLOT_DURATION} minutes")
    if price < 0:
        raise FormatError("price must be >= 0")
    start_time = normalize_time(data.get("start_time") or "")

    # recurring entries on a shared resource keep the same grace as bookings
    resource = catalog.resource_for(service_type)
    candidate = TimeRange.from_duration(day_of_week, start_time, duration, resource=resource)
    existing = catalog.weekly_commitments(resource, day_of_week)
    found = find_conflicts(candidate, existing, current_app.config.get("GRACE_MINUTES", 30))
    if found:
        details = ", ".join(c.describe() for c in found)
        raise ConflictError(f"Conflicts with: {details}", conflicts=found)

    entry = ScheduleEntry(
        template_id=template.id,
        day_of_week=day_of_week,
        start_time=start_time,
        duration=duration,
        price=price,
    )
    db.session.add(entry)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return jsonify(error="Entry already exists"), 409
    availability_cache.invalidate(service_type)

    log_event("SCHEDULE_ENTRY_ADD", user_id=g.user.id, entity="schedule_entry", entity_id=entry.id,
              metadata={"service_type": service_type, "day_of_week": day_of_week, "start_time": start_time})
    return jsonify(entry.to_dict()), 201


@schedules_bp.delete("/entries/<int:entry_id>")
@require_roles("ADMIN")
def delete_entry(entry_id: int):
    entry = ScheduleEntry.query.get(entry_id)
    if not entry:
        return jsonify(error="Entry not found"), 404
    service_type = entry.template.service_type

    db.session.delete(entry)
    db.session.commit()
    availability_cache.invalidate(service_type)

    log_event("SCHEDULE_ENTRY_DELETE", user_id=g.user.id, entity="schedule_entry", entity_id=entry_id)
    return jsonify(deleted=True), 200


@schedules_bp.get("/<service_type>/availability")
@login_required
def availability(service_type: str):
    days = request.args.get("days", type=int) or 15
    days = max(1, min(days, 60))
    result = catalog.derive_from_schedule(service_type, start_date=request.args.get("from"), days=days)
    return jsonify(service_type=service_type, days=[d.to_dict() for d in result]), 200


@schedules_bp.get("/<service_type>/suggestions")
@login_required
def suggestions(service_type: str):
    catalog.validate_service_type(service_type)
    raw_date = request.args.get("date")
    if not raw_date:
        raise FormatError("date is required")
    day = parse_date(raw_date)
    duration = request.args.get("duration", type=int) or current_app.config.get("DEFAULT_SLOT_DURATION", 60)
    if duration <= 0:
        raise FormatError("duration must be positive")

    cfg = current_app.config
    resource = catalog.resource_for(service_type)
    times = suggest_slots(
        day,
        duration,
        catalog.commitments_on(resource, day),
        grace_minutes=cfg.get("GRACE_MINUTES", 30),
        work_start=cfg.get("WORK_START", "08:00"),
        work_end=cfg.get("WORK_END", "20:00"),
        limit=request.args.get("limit", type=int) or cfg.get("SUGGESTION_LIMIT", 5),
        step_minutes=cfg.get("SUGGESTION_STEP_MINUTES", 30),
        resource=resource,
    )
    return jsonify(date=day.isoformat(), duration=duration, suggestions=times), 200
