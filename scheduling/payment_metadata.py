"""
Closed set of metadata shapes attached to payment records.

A payment either pays for a reservation or for a subscription period.
Anything else the provider sends (older clients, hand-made records) is kept
verbatim as LegacyMetadata so nothing is lost.
"""
import json
from dataclasses import asdict, dataclass, field
from typing import ClassVar, Optional, Union

from scheduling.errors import FormatError


@dataclass(frozen=True)
class ReservationMetadata:
    kind: ClassVar[str] = "reservation"

    service_type: str
    booking_id: Optional[int] = None
    slot_date: Optional[str] = None
    slot_time: Optional[str] = None


@dataclass(frozen=True)
class SubscriptionMetadata:
    kind: ClassVar[str] = "subscription"

    service: str
    period_days: Optional[int] = None


@dataclass(frozen=True)
class LegacyMetadata:
    kind: ClassVar[str] = "legacy"

    data: dict = field(default_factory=dict)


PaymentMetadata = Union[ReservationMetadata, SubscriptionMetadata, LegacyMetadata]


def _optional_int(data: dict, key: str) -> Optional[int]:
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise FormatError(f"metadata.{key} must be an integer") from None


def parse_metadata(data) -> PaymentMetadata:
    if not data:
        return LegacyMetadata()
    if not isinstance(data, dict):
        raise FormatError("metadata must be an object")

    kind = data.get("kind")
    if kind is None and data.get("booking_id") not in (None, ""):
        kind = ReservationMetadata.kind

    if kind == ReservationMetadata.kind:
        service_type = data.get("service_type")
        if not service_type:
            raise FormatError("metadata.service_type is required for reservation payments")
        return ReservationMetadata(
            service_type=service_type,
            booking_id=_optional_int(data, "booking_id"),
            slot_date=data.get("slot_date"),
            slot_time=data.get("slot_time"),
        )

    if kind == SubscriptionMetadata.kind:
        service = data.get("service")
        if not service:
            raise FormatError("metadata.service is required for subscription payments")
        return SubscriptionMetadata(service=service, period_days=_optional_int(data, "period_days"))

    return LegacyMetadata(data=dict(data))


def metadata_to_dict(meta: PaymentMetadata) -> dict:
    if isinstance(meta, LegacyMetadata):
        return dict(meta.data)
    out = {"kind": meta.kind}
    out.update(asdict(meta))
    return out


def dump_metadata(meta: PaymentMetadata):
    """-> (metadata_kind, metadata_json) column values"""
    body = metadata_to_dict(meta)
    return meta.kind, (json.dumps(body) if body else None)


def load_metadata(kind: str, raw: Optional[str]) -> PaymentMetadata:
    data = json.loads(raw) if raw else {}
    if kind == LegacyMetadata.kind:
        return LegacyMetadata(data=data)
    data["kind"] = kind
    return parse_metadata(data)
