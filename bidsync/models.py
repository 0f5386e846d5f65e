# bidsync/models.py
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Dict, Any, Union

from bidsync.enums import (
    Role, BidStatus, ShipmentStatus, SubscriptionStatus, Plan, BillingCycle,
    VerificationValue, CARRIER_ROLES,
)


@dataclass(frozen=True)
class Bid:
    id: str
    shipmentId: str
    carrierId: str
    price: Decimal
    currency: str
    eta: str                        # free text, e.g. "3 days"
    message: str = ""
    status: BidStatus = BidStatus.PENDING
    createdAt: int = 0              # ms
    updatedAt: int = 0              # ms, 0 for local optimistic records


@dataclass(frozen=True)
class Shipment:
    id: str
    status: ShipmentStatus
    ownerId: str
    title: str = ""
    updatedAt: int = 0


@dataclass(frozen=True)
class Subscription:
    id: str
    plan: Plan
    billingCycle: BillingCycle
    status: SubscriptionStatus
    amount: Decimal = Decimal("0")
    currency: str = "NGN"
    currentPeriodEnd: Optional[int] = None
    reference: Optional[str] = None     # opaque payment correlation token
    metadata: Dict[str, Any] = field(default_factory=dict, hash=False, compare=True)
    updatedAt: int = 0


@dataclass(frozen=True)
class VerificationStatus:
    id: str                          # the actor id
    value: VerificationValue
    updatedAt: int = 0


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role

    @property
    def is_carrier(self) -> bool:
        return self.role in CARRIER_ROLES


Entity = Union[Bid, Shipment, Subscription, VerificationStatus]


@dataclass(frozen=True)
class BidResult:
    """A bid command answer; create and accept may open a chat conversation."""
    bid: Bid
    conversationId: Optional[str] = None   # handed to the chat collaborator


@dataclass(frozen=True)
class SubscriptionCheckout:
    subscription: Subscription
    reference: str
    authorizationUrl: Optional[str] = None


@dataclass(frozen=True)
class Profile:
    actor: Actor
    verification: VerificationStatus
