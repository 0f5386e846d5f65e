# bidsync/payloads.py
"""
Decoders from marketplace JSON into the frozen domain models.

The server is a document store: ids arrive as ``_id``, references such as
``shipment`` or ``carrier`` arrive either as a bare id or as a populated
sub-document, and timestamps are ISO-8601 strings.
"""
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional, List

from bidsync.enums import (
    Role, BidStatus, ShipmentStatus, SubscriptionStatus, Plan, BillingCycle,
    VerificationValue,
)
from bidsync.errors import Unknown
from bidsync.models import Bid, Shipment, Subscription, VerificationStatus, Actor, Profile
from utils.time import to_ms

Json = Dict[str, Any]

_SUBSCRIPTION_STATUS_ALIASES = {
    "inactive": SubscriptionStatus.PENDING_PAYMENT,
    "pending": SubscriptionStatus.PENDING_PAYMENT,
    "expired": SubscriptionStatus.CANCELLED,
}

# statuses the marketplace backend stores for shipments
_SHIPMENT_STATUS_ALIASES = {
    "accepted": ShipmentStatus.IN_PROGRESS,
    "delivered": ShipmentStatus.COMPLETED,
}


def _id_of(x: Any) -> Optional[str]:
    """Id from a bare value or a populated sub-document."""
    if x is None:
        return None
    if isinstance(x, dict):
        x = x.get("_id") or x.get("id")
        return str(x) if x else None
    s = str(x).strip()
    return s or None

def _to_decimal(x: Any) -> Decimal:
    if x is None or x == "":
        return Decimal("0")
    try:
        return Decimal(str(x))
    except InvalidOperation:
        return Decimal("0")

def _require_id(raw: Json, what: str) -> str:
    ent_id = _id_of(raw)
    if not ent_id:
        raise Unknown(f"{what} payload without id: {raw}")
    return ent_id

def unwrap(payload: Any) -> Any:
    """Strip the ``{success, message, data}`` envelope when present."""
    if isinstance(payload, dict) and "data" in payload and (
        "success" in payload or "message" in payload
    ):
        return payload["data"]
    return payload

def as_list(payload: Any) -> List[Json]:
    data = unwrap(payload)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return [d for d in data if isinstance(d, dict)]


def parse_bid(raw: Json) -> Bid:
    try:
        status = BidStatus(str(raw.get("status") or "pending").lower())
    except ValueError as e:
        raise Unknown(f"unexpected bid status: {raw.get('status')}") from e
    created = to_ms(raw.get("createdAt")) or 0
    return Bid(
        id=_require_id(raw, "bid"),
        shipmentId=_id_of(raw.get("shipment")) or _id_of(raw.get("shipmentId")) or "",
        carrierId=_id_of(raw.get("carrier")) or _id_of(raw.get("carrierId")) or "",
        price=_to_decimal(raw.get("price")),
        currency=str(raw.get("currency") or "USD").upper(),
        eta=str(raw.get("eta") or ""),
        message=str(raw.get("message") or ""),
        status=status,
        createdAt=created,
        updatedAt=to_ms(raw.get("updatedAt")) or created,
    )

def parse_shipment(raw: Json) -> Shipment:
    try:
        raw_status = str(raw.get("status") or "open").lower()
        status = _SHIPMENT_STATUS_ALIASES.get(raw_status) or ShipmentStatus(raw_status)
    except ValueError as e:
        raise Unknown(f"unexpected shipment status: {raw.get('status')}") from e
    return Shipment(
        id=_require_id(raw, "shipment"),
        status=status,
        ownerId=_id_of(raw.get("user")) or _id_of(raw.get("ownerId")) or "",
        title=str(raw.get("shipmentTitle") or raw.get("title") or ""),
        updatedAt=to_ms(raw.get("updatedAt")) or to_ms(raw.get("createdAt")) or 0,
    )

def parse_subscription(raw: Json) -> Subscription:
    raw_status = str(raw.get("status") or "pending_payment").lower()
    try:
        status = _SUBSCRIPTION_STATUS_ALIASES.get(raw_status) or SubscriptionStatus(raw_status)
        plan = Plan(str(raw.get("plan") or "basic").lower())
        cycle = BillingCycle(str(raw.get("billingCycle") or "monthly").lower())
    except ValueError as e:
        raise Unknown(f"unexpected subscription payload: {raw}") from e
    reference = raw.get("reference") or raw.get("paystackReference") or raw.get("paymentId")
    return Subscription(
        id=_require_id(raw, "subscription"),
        plan=plan,
        billingCycle=cycle,
        status=status,
        amount=_to_decimal(raw.get("amount")),
        currency=str(raw.get("currency") or "NGN").upper(),
        currentPeriodEnd=to_ms(raw.get("currentPeriodEnd")) or to_ms(raw.get("endDate")),
        reference=str(reference) if reference else None,
        metadata=dict(raw.get("metadata") or {}),
        updatedAt=to_ms(raw.get("updatedAt")) or to_ms(raw.get("createdAt")) or 0,
    )

def parse_verification(raw: Json, actor_id: Optional[str] = None) -> VerificationStatus:
    user = raw.get("user") if isinstance(raw.get("user"), dict) else raw
    value = str(
        user.get("verificationStatus") or user.get("value") or user.get("status") or "unverified"
    ).lower()
    try:
        verification = VerificationValue(value)
    except ValueError:
        verification = VerificationValue.UNVERIFIED
    return VerificationStatus(
        id=actor_id or _id_of(user.get("userId")) or _require_id(user, "verification"),
        value=verification,
        updatedAt=to_ms(user.get("updatedAt")) or 0,
    )


def parse_profile(payload: Any) -> Profile:
    raw = unwrap(payload) or {}
    user = raw.get("user") if isinstance(raw.get("user"), dict) else raw
    actor_id = _require_id(user, "profile")
    try:
        role = Role(str(user.get("role") or "user").lower())
    except ValueError:
        role = Role.USER
    return Profile(
        actor=Actor(id=actor_id, role=role),
        verification=parse_verification(user, actor_id),
    )
