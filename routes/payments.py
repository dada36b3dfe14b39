import logging

from flask import Blueprint, request, jsonify, g

from models.constants import PAYMENT_APPROVED, PAYMENT_CANCELLED, PAYMENT_REJECTED
from scheduling import access, reservations
from scheduling.access import PaymentPayload, PaymentUpdate
from scheduling.errors import BookingError, FormatError
from scheduling.payment_metadata import ReservationMetadata, metadata_to_dict
from security.rbac import require_roles
from utils.auth_context import login_required
from utils.audit import log_event

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")
access_bp = Blueprint("access", __name__)


def settle_reservation(update: PaymentUpdate):
    """Confirm or cancel the booking a reservation payment was made for."""
    meta = update.metadata
    if not update.changed or not isinstance(meta, ReservationMetadata) or meta.booking_id is None:
        return None

    status = update.record.status
    try:
        if status == PAYMENT_APPROVED:
            return reservations.confirm_booking(meta.booking_id)
        if status in (PAYMENT_REJECTED, PAYMENT_CANCELLED):
            return reservations.cancel_booking(meta.booking_id, reason=f"Payment {status}")
    except BookingError as exc:
        # payment is recorded either way; the booking side needs an operator
        logger.warning("Payment %s could not settle booking %s: %s",
                       update.record.external_reference, meta.booking_id, exc.message)
        log_event("PAYMENT_SETTLE_FAILED", user_id=update.record.user_id, entity="booking",
                  entity_id=meta.booking_id, metadata={"payment_status": status, "error": exc.message})
    return None


def update_response(update: PaymentUpdate) -> dict:
    return {
        "payment": update.record.to_dict(),
        "metadata": metadata_to_dict(update.metadata),
        "created": update.created,
        "changed": update.changed,
        "anomaly": update.anomaly.to_dict() if update.anomaly else None,
    }


# ---------- payment gateway relay: status notifications ----------
@payments_bp.post("/notifications")
@require_roles("SYSTEM", "ADMIN")
def payment_notification():
    data = request.get_json(silent=True) or {}
    external_reference = data.get("external_reference")
    status = data.get("status")
    if not external_reference or not status:
        raise FormatError("external_reference and status are required")

    payload = PaymentPayload.from_dict(data)
    update = access.apply_payment_update(str(external_reference), status, payload)
    booking = settle_reservation(update)

    if update.changed:
        log_event("PAYMENT_STATUS", user_id=update.record.user_id, entity="payment", entity_id=update.record.id,
                  metadata={"status": update.record.status, "created": update.created,
                            "booking_id": booking.id if booking else None})

    return jsonify(update_response(update)), 201 if update.created else 200


# ---------- USERS: subscription access ----------
@access_bp.get("/access/me")
@login_required
def my_access():
    windows = access.user_windows(g.user.id)
    return jsonify({service: w.to_dict() for service, w in windows.items()}), 200


@access_bp.get("/access/<service>")
@login_required
def service_access(service: str):
    window = access.active_window(g.user.id, service)
    return jsonify(service=service, **window.to_dict()), 200


# ---------- ADMIN: expiry notification feed ----------
@access_bp.get("/admin/notification-feed")
@require_roles("ADMIN")
def notification_feed():
    candidates = access.notification_candidates()
    return jsonify([c.to_dict() for c in candidates]), 200
