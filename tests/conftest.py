# tests/conftest.py
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import asyncio
from decimal import Decimal

import pytest

from bidsync.enums import (
    EntityKind, BidStatus, ShipmentStatus, SubscriptionStatus, Plan, BillingCycle,
    VerificationValue,
)
from bidsync.models import Bid, Shipment, Subscription, VerificationStatus
from bidsync.services.bid_service import BidService
from bidsync.services.reconcile_service import ReconcileService
from bidsync.services.subscription_service import SubscriptionService
from bidsync.services.verification_gate import VerificationGate
from bidsync.stores.entity_store import EntityStore

T0 = 1_700_000_000_000
CARRIER = "carrier-1"
OWNER = "owner-1"


class FakeApi:
    """
    Stand-in for MarketplaceApi. ``responses[name]`` is a value, an exception
    instance to raise, or a callable taking the call args. ``holds[name]`` is an
    asyncio.Event the call waits on before answering.
    """

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.holds = {}

    def called(self, name):
        return [args for n, args in self.calls if n == name]

    async def _answer(self, name, *args):
        self.calls.append((name, args))
        hold = self.holds.get(name)
        if hold is not None:
            await hold.wait()
        r = self.responses[name]
        if isinstance(r, BaseException):
            raise r
        if callable(r):
            return r(*args)
        return r

    async def create_bid(self, shipmentId, price, currency, eta, message=None):
        return await self._answer("create_bid", shipmentId, price, currency, eta, message)

    async def edit_bid(self, bidId, price, eta, message=None):
        return await self._answer("edit_bid", bidId, price, eta, message)

    async def accept_bid(self, bidId):
        return await self._answer("accept_bid", bidId)

    async def reject_bid(self, bidId):
        return await self._answer("reject_bid", bidId)

    async def list_my_bids(self):
        return await self._answer("list_my_bids")

    async def list_bids_on_my_shipments(self):
        return await self._answer("list_bids_on_my_shipments")

    async def list_bids_for_shipment(self, shipmentId):
        return await self._answer("list_bids_for_shipment", shipmentId)

    async def list_available_shipments(self):
        return await self._answer("list_available_shipments")

    async def list_my_active_shipments(self):
        return await self._answer("list_my_active_shipments")

    async def create_subscription(self, billingCycle, plan):
        return await self._answer("create_subscription", billingCycle, plan)

    async def confirm_subscription(self, reference):
        return await self._answer("confirm_subscription", reference)

    async def list_my_subscriptions(self):
        return await self._answer("list_my_subscriptions")

    async def cancel_subscription(self, subscriptionId):
        return await self._answer("cancel_subscription", subscriptionId)

    async def get_profile(self):
        return await self._answer("get_profile")


def make_bid(id="bid-9", shipmentId="ship-1", carrierId=CARRIER, price="100",
             status=BidStatus.PENDING, updatedAt=T0, **kw):
    kw.setdefault("currency", "USD")
    kw.setdefault("eta", "3 days")
    return Bid(id=id, shipmentId=shipmentId, carrierId=carrierId, price=Decimal(price),
               status=status, createdAt=kw.pop("createdAt", updatedAt), updatedAt=updatedAt, **kw)


def make_shipment(id="ship-1", status=ShipmentStatus.OPEN, ownerId=OWNER, updatedAt=T0, **kw):
    return Shipment(id=id, status=status, ownerId=ownerId, updatedAt=updatedAt, **kw)


def make_subscription(id="sub-1", status=SubscriptionStatus.PENDING_PAYMENT, updatedAt=T0,
                      billingCycle=BillingCycle.MONTHLY, plan=Plan.BASIC, **kw):
    return Subscription(id=id, plan=plan, billingCycle=billingCycle, status=status,
                        updatedAt=updatedAt, **kw)


@pytest.fixture
def bid_factory():
    return make_bid

@pytest.fixture
def shipment_factory():
    return make_shipment

@pytest.fixture
def subscription_factory():
    return make_subscription

@pytest.fixture
def store():
    return EntityStore()

@pytest.fixture
def reconciler(store):
    return ReconcileService(store)

@pytest.fixture
def gate(store):
    return VerificationGate(store, actor_id=CARRIER)

@pytest.fixture
def verify(store, gate):
    """Put a verification status for the gate's actor straight into the store."""
    def _verify(value=VerificationValue.VERIFIED, ts=T0):
        store.put(EntityKind.VERIFICATION, VerificationStatus(id=gate.actor_id, value=value, updatedAt=ts))
    return _verify

@pytest.fixture
def api():
    return FakeApi()

@pytest.fixture
def bids(api, store, reconciler, gate):
    return BidService(api, store, reconciler, gate)

@pytest.fixture
def subs(api, store, reconciler, gate):
    return SubscriptionService(api, store, reconciler, gate)

@pytest.fixture
def changes(store):
    """Record every store notification as (kind, id, entity)."""
    seen = []
    for kind in EntityKind:
        store.subscribe(kind, lambda i, e, k=kind: seen.append((k, i, e)))
    return seen
