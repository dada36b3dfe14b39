import stripe
from flask import Blueprint, request, jsonify, current_app

from models.constants import PAYMENT_APPROVED, PAYMENT_CANCELLED, PAYMENT_IN_PROCESS, PAYMENT_REJECTED
from routes.payments import settle_reservation
from scheduling import access
from scheduling.access import PaymentPayload
from scheduling.errors import BookingError
from utils.audit import log_event

webhook_bp = Blueprint("webhook", __name__, url_prefix="/webhooks")

HANDLED_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "checkout.session.async_payment_failed",
    "checkout.session.expired",
)


def _status_for(event_type: str, session) -> str:
    if event_type == "checkout.session.completed":
        # delayed methods complete the session before the money arrives
        return PAYMENT_APPROVED if session.get("payment_status") == "paid" else PAYMENT_IN_PROCESS
    if event_type == "checkout.session.async_payment_succeeded":
        return PAYMENT_APPROVED
    if event_type == "checkout.session.async_payment_failed":
        return PAYMENT_REJECTED
    return PAYMENT_CANCELLED


@webhook_bp.post("/stripe")
def stripe_webhook():
    endpoint_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    sig_header = request.headers.get("Stripe-Signature")
    payload = request.data

    if not endpoint_secret:
        return jsonify(error="Webhook secret not configured"), 500

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, endpoint_secret)
    except Exception:
        return jsonify(error="Invalid webhook signature"), 400

    event_type = event.get("type")
    if event_type not in HANDLED_EVENTS:
        return jsonify(received=True), 200

    session = event["data"]["object"]
    meta = dict(session.get("metadata") or {})
    external_reference = session.get("client_reference_id") or meta.pop("external_reference", None) or session.get("id")
    status = _status_for(event_type, session)

    try:
        data = {
            "user_id": meta.pop("user_id", None),
            "service": meta.get("service") or meta.get("service_type"),
            "amount": session.get("amount_total"),
            "currency": session.get("currency"),
            "provider": "STRIPE",
            "provider_payment_id": session.get("payment_intent"),
            "metadata": meta,
        }
        update = access.apply_payment_update(external_reference, status, PaymentPayload.from_dict(data))
    except BookingError as exc:
        # acknowledged; redelivery would fail the same way
        log_event("STRIPE_EVENT_REJECTED", entity="payment", entity_id=external_reference,
                  metadata={"event_type": event_type, "error": exc.message})
        return jsonify(received=True, error=exc.message), 200

    settle_reservation(update)
    if update.changed:
        log_event("PAYMENT_STATUS", user_id=update.record.user_id, entity="payment", entity_id=update.record.id,
                  metadata={"status": update.record.status, "stripe_session_id": session.get("id")})

    return jsonify(received=True), 200
