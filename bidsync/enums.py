# bidsync/enums.py
from enum import Enum

class EntityKind(str, Enum):
    BID = "bid"
    SHIPMENT = "shipment"
    SUBSCRIPTION = "subscription"
    VERIFICATION = "verification"

class Source(str, Enum):
    COMMAND = "command"
    POLL = "poll"
    PUSH = "push"

class Role(str, Enum):
    CARRIER = "carrier"
    LOGISTICS = "logistics"
    USER = "user"
    ADMIN = "admin"

class BidStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

class ShipmentStatus(str, Enum):
    OPEN = "open"
    BIDDING_CLOSED = "bidding_closed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

class SubscriptionStatus(str, Enum):
    PENDING_PAYMENT = "pending_payment"
    ACTIVE = "active"
    CANCELLED = "cancelled"

class Plan(str, Enum):
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"

class BillingCycle(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"

class VerificationValue(str, Enum):
    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


ACTIVE_BID_STATUSES = frozenset({BidStatus.PENDING, BidStatus.ACCEPTED})
CARRIER_ROLES = frozenset({Role.CARRIER, Role.LOGISTICS})

SUPPORTED_CURRENCIES = frozenset({
    "USD", "EUR", "GBP", "CAD", "AUD", "JPY", "CHF",
    "CNY", "INR", "BRL", "MXN", "ZAR", "NGN",
})

PERIOD_DAYS = {
    BillingCycle.WEEKLY: 7,
    BillingCycle.MONTHLY: 30,
    BillingCycle.YEARLY: 365,
}
