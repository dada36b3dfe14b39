"""
Subscription access windows derived from the payment ledger, the expiry
notification feed, and idempotent ingestion of payment-provider status
notifications (delivered at least once, possibly replayed).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from models import db
from models.constants import (
    PAYMENT_APPROVED,
    PAYMENT_STATUSES,
    TERMINAL_PAYMENT_STATUSES,
)
from models.payment import Payment
from scheduling.errors import AnomalyWarning, FormatError
from scheduling.payment_metadata import (
    LegacyMetadata,
    PaymentMetadata,
    SubscriptionMetadata,
    dump_metadata,
    load_metadata,
    parse_metadata,
)
from scheduling.timeutils import parse_utc_datetime, utcnow
from utils.audit import log_event

logger = logging.getLogger(__name__)

EXPIRING = "expiring"
EXPIRED = "expired"


@dataclass
class AccessWindow:
    active: bool
    expiry: Optional[datetime]

    def to_dict(self) -> dict:
        return {"active": self.active, "expiry": self.expiry.isoformat() if self.expiry else None}


@dataclass
class NotificationCandidate:
    user_id: Optional[str]
    service: str
    expiry: datetime
    kind: str  # "expiring" | "expired"

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "service": self.service,
            "expiry": self.expiry.isoformat(),
            "kind": self.kind,
        }


@dataclass
class PaymentPayload:
    user_id: Optional[str] = None
    service: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    expiry: Optional[datetime] = None  # naive UTC
    transaction_at: Optional[datetime] = None  # naive UTC
    provider: Optional[str] = None
    provider_payment_id: Optional[str] = None
    metadata: PaymentMetadata = field(default_factory=LegacyMetadata)

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentPayload":
        amount = data.get("amount")
        if amount is not None:
            try:
                amount = int(amount)
            except (TypeError, ValueError):
                raise FormatError("amount must be an integer in the smallest currency unit") from None
            if amount < 0:
                raise FormatError("amount must be >= 0")

        expiry = data.get("expiry")
        transaction_at = data.get("transaction_at")
        return cls(
            user_id=(str(data["user_id"]).strip() or None) if data.get("user_id") else None,
            service=data.get("service") or None,
            amount=amount,
            currency=(data.get("currency") or "").upper() or None,
            expiry=parse_utc_datetime(expiry) if expiry else None,
            transaction_at=parse_utc_datetime(transaction_at) if transaction_at else None,
            provider=data.get("provider") or None,
            provider_payment_id=str(data["provider_payment_id"]) if data.get("provider_payment_id") else None,
            metadata=parse_metadata(data.get("metadata")),
        )


@dataclass
class PaymentUpdate:
    record: Payment
    created: bool = False
    changed: bool = False
    anomaly: Optional[AnomalyWarning] = None

    @property
    def metadata(self) -> PaymentMetadata:
        return load_metadata(self.record.metadata_kind, self.record.metadata_json)


def active_window(user_id: str, service: str, now: Optional[datetime] = None) -> AccessWindow:
    """
    Active iff some approved payment for (user, service) expires after `now`.
    `expiry` is the latest approved expiry, also reported once it has lapsed.
    """
    now = now or utcnow()
    latest = (
        db.session.query(func.max(Payment.expiry_at))
        .filter(
            Payment.user_id == user_id,
            Payment.service == service,
            Payment.status == PAYMENT_APPROVED,
        )
        .scalar()
    )
    if latest is None:
        return AccessWindow(active=False, expiry=None)
    return AccessWindow(active=latest > now, expiry=latest)


def user_windows(user_id: str, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    rows = (
        db.session.query(Payment.service, func.max(Payment.expiry_at))
        .filter(Payment.user_id == user_id, Payment.status == PAYMENT_APPROVED)
        .group_by(Payment.service)
        .all()
    )
    return {
        service: AccessWindow(active=expiry is not None and expiry > now, expiry=expiry)
        for service, expiry in rows
    }


def notification_candidates(now: Optional[datetime] = None) -> List[NotificationCandidate]:
    """
    Approved payments expiring within the next window ("expiring") or lapsed
    within the last one ("expired"). Read-only.
    """
    now = now or utcnow()
    window = timedelta(hours=current_app.config.get("NOTIFICATION_WINDOW_HOURS", 24))
    rows = (
        Payment.query
        .filter(
            Payment.status == PAYMENT_APPROVED,
            Payment.expiry_at.isnot(None),
            Payment.expiry_at >= now - window,
            Payment.expiry_at <= now + window,
        )
        .order_by(Payment.expiry_at.asc(), Payment.id.asc())
        .all()
    )
    return [
        NotificationCandidate(
            user_id=p.user_id,
            service=p.service,
            expiry=p.expiry_at,
            kind=EXPIRING if p.expiry_at >= now else EXPIRED,
        )
        for p in rows
    ]


def _approval_expiry(user_id, service, transaction_at: datetime, explicit: Optional[datetime],
                     meta: PaymentMetadata) -> datetime:
    if explicit is not None:
        if explicit <= transaction_at:
            raise FormatError("expiry must be after the transaction time")
        return explicit

    days = current_app.config.get("SUBSCRIPTION_DAYS", 30)
    if isinstance(meta, SubscriptionMetadata) and meta.period_days:
        days = meta.period_days

    base = transaction_at
    policy = current_app.config.get("SUBSCRIPTION_RENEWAL_POLICY", "extend")
    # Best effort: two approvals for the same user and service committed at
    # the same time can both read the same current window, and one extension
    # is lost. Serial approvals always stack.
    if policy == "extend" and user_id:
        current = active_window(user_id, service, now=transaction_at)
        if current.active:
            base = current.expiry
    return base + timedelta(days=days)


def _insert(external_reference: str, new_status: str, payload: PaymentPayload) -> Payment:
    if not payload.service:
        raise FormatError("service is required for a new payment")

    transaction_at = payload.transaction_at or utcnow()
    expiry = payload.expiry
    if new_status == PAYMENT_APPROVED:
        expiry = _approval_expiry(payload.user_id, payload.service, transaction_at, expiry, payload.metadata)

    kind, raw = dump_metadata(payload.metadata)
    record = Payment(
        external_reference=external_reference,
        user_id=payload.user_id,
        service=payload.service,
        amount=payload.amount or 0,
        currency=payload.currency or "ARS",
        provider=payload.provider or "MERCADOPAGO",
        provider_payment_id=payload.provider_payment_id,
        status=new_status,
        transaction_at=transaction_at,
        expiry_at=expiry,
        metadata_kind=kind,
        metadata_json=raw,
    )
    db.session.add(record)
    db.session.commit()
    return record


def _record_anomaly(record: Payment, new_status: str) -> AnomalyWarning:
    warning = AnomalyWarning(record.external_reference, record.status, new_status)
    logger.warning(str(warning))
    log_event(
        "PAYMENT_ANOMALY",
        user_id=record.user_id,
        entity="payment",
        entity_id=record.id,
        metadata=warning.to_dict(),
    )
    return warning


def apply_payment_update(external_reference: str, new_status: str, payload: Optional[PaymentPayload] = None,
                         _retry: bool = True) -> PaymentUpdate:
    """
    Idempotent upsert keyed by the provider's external reference.

    - unknown reference: insert (a concurrent insert of the same reference
      loses on the unique key and is re-applied as an update)
    - terminal status replayed with the same status: no-op
    - terminal status moved to a different terminal status: not applied,
      reported as AnomalyWarning on the result
    - anything else: compare-and-swap on the previous status
    """
    external_reference = (external_reference or "").strip()
    if not external_reference:
        raise FormatError("external_reference is required")
    new_status = (new_status or "").strip().lower()
    if new_status not in PAYMENT_STATUSES:
        raise FormatError(f"Unknown payment status {new_status!r}", allowed=list(PAYMENT_STATUSES))
    payload = payload or PaymentPayload()

    record = Payment.query.filter_by(external_reference=external_reference).first()
    if record is None:
        try:
            record = _insert(external_reference, new_status, payload)
        except IntegrityError:
            db.session.rollback()
            record = Payment.query.filter_by(external_reference=external_reference).first()
            if record is None:
                raise
        else:
            logger.info("Payment %s recorded as %s", external_reference, new_status)
            return PaymentUpdate(record=record, created=True, changed=True)

    current = record.status
    if current == new_status:
        return PaymentUpdate(record=record)

    if current in TERMINAL_PAYMENT_STATUSES:
        if new_status in TERMINAL_PAYMENT_STATUSES:
            return PaymentUpdate(record=record, anomaly=_record_anomaly(record, new_status))
        # late, out-of-order non-terminal notification
        logger.info("Ignoring %s for payment %s already %s", new_status, external_reference, current)
        return PaymentUpdate(record=record)

    now = utcnow()
    values = {Payment.status: new_status, Payment.updated_at: now}
    if payload.user_id and not record.user_id:
        values[Payment.user_id] = payload.user_id
    if payload.amount is not None:
        values[Payment.amount] = payload.amount
    if payload.currency:
        values[Payment.currency] = payload.currency
    if payload.provider_payment_id:
        values[Payment.provider_payment_id] = payload.provider_payment_id
    if not isinstance(payload.metadata, LegacyMetadata) or payload.metadata.data:
        kind, raw = dump_metadata(payload.metadata)
        values[Payment.metadata_kind] = kind
        values[Payment.metadata_json] = raw

    transaction_at = payload.transaction_at or record.transaction_at or now
    if payload.transaction_at:
        values[Payment.transaction_at] = transaction_at
    if new_status == PAYMENT_APPROVED:
        meta = payload.metadata
        if isinstance(meta, LegacyMetadata) and not meta.data:
            meta = load_metadata(record.metadata_kind, record.metadata_json)
        values[Payment.expiry_at] = _approval_expiry(
            record.user_id or payload.user_id,
            record.service,
            transaction_at,
            payload.expiry or record.expiry_at,
            meta,
        )
    elif payload.expiry:
        values[Payment.expiry_at] = payload.expiry

    changed = (
        Payment.query
        .filter_by(id=record.id, status=current)
        .update(values, synchronize_session=False)
    )
    if changed == 0:
        # another instance moved the record first; evaluate against its state
        db.session.rollback()
        if _retry:
            return apply_payment_update(external_reference, new_status, payload, _retry=False)
        db.session.refresh(record)
        return PaymentUpdate(record=record)

    db.session.commit()
    db.session.refresh(record)
    logger.info("Payment %s moved %s -> %s", external_reference, current, new_status)
    return PaymentUpdate(record=record, changed=True)
