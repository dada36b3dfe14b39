from datetime import datetime, timedelta

import pytest

from models.audit_log import AuditLog
from models.payment import Payment
from scheduling import access
from scheduling.access import PaymentPayload
from scheduling.errors import FormatError
from scheduling.payment_metadata import SubscriptionMetadata

TX = datetime(2025, 1, 1)
EXPIRY = datetime(2025, 1, 31)


def approve(ref="mp-1", user_id="alice", service="TraderCall", **kwargs):
    kwargs.setdefault("transaction_at", TX)
    payload = PaymentPayload(user_id=user_id, service=service, amount=1000, currency="ARS", **kwargs)
    return access.apply_payment_update(ref, "approved", payload)


def test_active_window_follows_expiry(app):
    approve(expiry=EXPIRY)

    window = access.active_window("alice", "TraderCall", now=datetime(2025, 1, 15))
    assert window.active
    assert window.expiry == EXPIRY

    lapsed = access.active_window("alice", "TraderCall", now=datetime(2025, 2, 1))
    assert not lapsed.active
    assert lapsed.expiry == EXPIRY


def test_active_window_without_payments(app):
    window = access.active_window("nobody", "TraderCall", now=TX)
    assert window.to_dict() == {"active": False, "expiry": None}


def test_only_approved_payments_grant_access(app):
    access.apply_payment_update("mp-2", "pending", PaymentPayload(user_id="alice", service="TraderCall",
                                                                  expiry=EXPIRY, transaction_at=TX))
    assert not access.active_window("alice", "TraderCall", now=datetime(2025, 1, 15)).active


def test_notification_candidates_kinds(app):
    approve(expiry=EXPIRY)

    expiring = access.notification_candidates(now=EXPIRY - timedelta(hours=2))
    assert [(c.user_id, c.service, c.kind) for c in expiring] == [("alice", "TraderCall", "expiring")]

    expired = access.notification_candidates(now=EXPIRY + timedelta(hours=2))
    assert [c.kind for c in expired] == ["expired"]

    assert access.notification_candidates(now=EXPIRY + timedelta(hours=48)) == []
    assert access.notification_candidates(now=EXPIRY - timedelta(hours=48)) == []


def test_replayed_approval_is_a_noop(app):
    first = approve(expiry=EXPIRY)
    assert first.created and first.changed

    second = approve(expiry=datetime(2025, 3, 1))
    assert not second.created and not second.changed
    assert second.anomaly is None
    assert Payment.query.count() == 1
    assert Payment.query.one().expiry_at == EXPIRY


def test_terminal_to_other_terminal_is_reported_not_applied(app):
    approve(expiry=EXPIRY)
    update = access.apply_payment_update("mp-1", "rejected")

    assert update.anomaly is not None
    assert update.anomaly.to_dict() == {
        "external_reference": "mp-1",
        "current_status": "approved",
        "attempted_status": "rejected",
    }
    assert Payment.query.one().status == "approved"
    assert AuditLog.query.filter_by(action="PAYMENT_ANOMALY").count() == 1


def test_late_non_terminal_notification_is_ignored(app):
    approve(expiry=EXPIRY)
    update = access.apply_payment_update("mp-1", "in_process")
    assert not update.changed
    assert Payment.query.one().status == "approved"


def test_pending_then_approved_moves_status(app):
    access.apply_payment_update("mp-3", "pending", PaymentPayload(user_id="alice", service="TraderCall",
                                                                  transaction_at=TX))
    update = access.apply_payment_update("mp-3", "approved", PaymentPayload(transaction_at=TX))
    assert update.changed and not update.created
    assert update.record.status == "approved"
    assert update.record.expiry_at == TX + timedelta(days=30)


def test_approval_without_expiry_uses_subscription_days(app):
    update = approve()
    assert update.record.expiry_at == TX + timedelta(days=30)


def test_subscription_period_from_metadata(app):
    update = approve(metadata=SubscriptionMetadata(service="TraderCall", period_days=90))
    assert update.record.expiry_at == TX + timedelta(days=90)
    assert update.metadata == SubscriptionMetadata(service="TraderCall", period_days=90)


def test_renewal_extends_current_window(app):
    approve("mp-1")
    renewal = approve("mp-2", transaction_at=TX + timedelta(days=20))
    assert renewal.record.expiry_at == TX + timedelta(days=60)


def test_renewal_overwrite_policy_starts_fresh(app):
    app.config["SUBSCRIPTION_RENEWAL_POLICY"] = "overwrite"
    approve("mp-1")
    renewal = approve("mp-2", transaction_at=TX + timedelta(days=20))
    assert renewal.record.expiry_at == TX + timedelta(days=50)


def test_renewal_after_lapse_starts_at_transaction(app):
    approve("mp-1")
    renewal = approve("mp-2", transaction_at=TX + timedelta(days=45))
    assert renewal.record.expiry_at == TX + timedelta(days=75)


def test_window_never_shrinks_when_more_approvals_arrive(app):
    approve("mp-1", expiry=datetime(2025, 6, 1))
    approve("mp-2", expiry=datetime(2025, 2, 1), transaction_at=datetime(2025, 1, 10))
    window = access.active_window("alice", "TraderCall", now=datetime(2025, 3, 1))
    assert window.active
    assert window.expiry == datetime(2025, 6, 1)


def test_explicit_expiry_must_follow_transaction(app):
    with pytest.raises(FormatError):
        approve(expiry=TX - timedelta(days=1))
    assert Payment.query.count() == 0


def test_unknown_status_and_missing_reference_are_rejected(app):
    with pytest.raises(FormatError):
        access.apply_payment_update("mp-1", "refunded", PaymentPayload(service="TraderCall"))
    with pytest.raises(FormatError):
        access.apply_payment_update("  ", "approved", PaymentPayload(service="TraderCall"))
    with pytest.raises(FormatError):
        access.apply_payment_update("mp-1", "approved", PaymentPayload())


def test_user_windows_lists_every_service(app):
    approve("mp-1", service="TraderCall", expiry=EXPIRY)
    approve("mp-2", service="SmartMoney", expiry=datetime(2024, 12, 31), transaction_at=datetime(2024, 12, 1))
    windows = access.user_windows("alice", now=datetime(2025, 1, 15))
    assert windows["TraderCall"].active
    assert not windows["SmartMoney"].active


def test_payment_payload_from_dict(app):
    payload = PaymentPayload.from_dict({
        "user_id": "alice",
        "service": "TraderCall",
        "amount": "1500",
        "currency": "ars",
        "expiry": "2025-01-31T03:00:00Z",
        "metadata": {"kind": "subscription", "service": "TraderCall"},
    })
    assert payload.amount == 1500
    assert payload.currency == "ARS"
    assert payload.expiry == datetime(2025, 1, 31, 3, 0)
    assert isinstance(payload.metadata, SubscriptionMetadata)

    with pytest.raises(FormatError):
        PaymentPayload.from_dict({"amount": "-1"})
