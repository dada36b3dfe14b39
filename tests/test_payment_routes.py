from datetime import timedelta

import pytest

from models.booking import Booking
from models.payment import Payment
from models.slot import Slot
from scheduling.timeutils import utcnow

SERVICE = "ConsultorioFinanciero"
MONDAY = "2031-11-03"


def notify(client, headers, **body):
    return client.post("/payments/notifications", headers=headers, json=body)


@pytest.fixture
def booking_id(client, admin_headers, user_headers):
    client.post("/slots/generate", headers=admin_headers, json={
        "service_type": SERVICE, "start_date": MONDAY, "end_date": MONDAY, "times": ["10:00"],
    })
    return client.post("/bookings", headers=user_headers,
                       json={"service_type": SERVICE, "start": f"{MONDAY}T10:00:00"}).get_json()["id"]


def test_notifications_require_system_role(client, user_headers):
    assert notify(client, {}).status_code == 401
    assert notify(client, user_headers, external_reference="x", status="approved").status_code == 403


def test_notification_requires_reference_and_status(client, system_headers):
    resp = notify(client, system_headers, status="approved")
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "format_error"


def test_subscription_approval_grants_access(client, system_headers, user_headers):
    tx = utcnow() - timedelta(days=1)
    body = dict(external_reference="mp-100", status="approved", user_id="alice", service="TraderCall",
                amount=5000, currency="ars", transaction_at=tx.isoformat())

    resp = notify(client, system_headers, **body)
    assert resp.status_code == 201
    created = resp.get_json()
    assert created["created"] is True
    assert created["payment"]["currency"] == "ARS"

    replay = notify(client, system_headers, **body)
    assert replay.status_code == 200
    assert replay.get_json()["changed"] is False
    assert Payment.query.count() == 1

    window = client.get("/access/TraderCall", headers=user_headers).get_json()
    assert window["active"] is True
    assert window["expiry"] == (tx + timedelta(days=30)).isoformat()

    mine = client.get("/access/me", headers=user_headers).get_json()
    assert mine["TraderCall"]["active"] is True

    assert client.get("/access/SmartMoney", headers=user_headers).get_json()["active"] is False


def test_conflicting_terminal_status_is_reported(client, system_headers):
    notify(client, system_headers, external_reference="mp-200", status="approved", service="TraderCall")
    resp = notify(client, system_headers, external_reference="mp-200", status="rejected")
    assert resp.status_code == 200
    assert resp.get_json()["anomaly"]["attempted_status"] == "rejected"
    assert resp.get_json()["payment"]["status"] == "approved"


def test_approved_reservation_payment_confirms_booking(booking_id, client, system_headers):
    resp = notify(client, system_headers, external_reference="mp-300", status="approved",
                  user_id="alice", service=SERVICE, amount=150,
                  metadata={"kind": "reservation", "service_type": SERVICE, "booking_id": booking_id})
    assert resp.status_code == 201
    assert resp.get_json()["metadata"]["booking_id"] == booking_id
    assert Booking.query.get(booking_id).status == "confirmed"


def test_rejected_reservation_payment_cancels_booking(booking_id, client, system_headers):
    notify(client, system_headers, external_reference="mp-301", status="pending", user_id="alice",
           service=SERVICE, metadata={"service_type": SERVICE, "booking_id": booking_id})
    assert Booking.query.get(booking_id).status == "pending"

    notify(client, system_headers, external_reference="mp-301", status="rejected")
    assert Booking.query.get(booking_id).status == "cancelled"
    assert Slot.query.one().available


def test_notification_feed(client, system_headers, admin_headers, user_headers):
    now = utcnow()
    notify(client, system_headers, external_reference="mp-400", status="approved", user_id="alice",
           service="TraderCall", transaction_at=(now - timedelta(days=29)).isoformat(),
           expiry=(now + timedelta(hours=2)).isoformat())
    notify(client, system_headers, external_reference="mp-401", status="approved", user_id="bob",
           service="TraderCall", transaction_at=(now - timedelta(days=5)).isoformat(),
           expiry=(now + timedelta(days=10)).isoformat())

    assert client.get("/admin/notification-feed", headers=user_headers).status_code == 403
    feed = client.get("/admin/notification-feed", headers=admin_headers).get_json()
    assert [(c["user_id"], c["kind"]) for c in feed] == [("alice", "expiring")]
