# bidsync/services/subscription_service.py
import asyncio
import dataclasses
from typing import Any, Dict, List, Optional

from bidsync.enums import (
    EntityKind, Source, Plan, BillingCycle, SubscriptionStatus, PERIOD_DAYS,
)
from bidsync.errors import SyncError, ValidationError, AlreadyActive, AlreadyCancelled
from bidsync.idempotency import make_temp_id, now_ms
from bidsync.models import Subscription, SubscriptionCheckout
from bidsync.services.reconcile_service import Fact, ReconcileService
from bidsync.services.verification_gate import VerificationGate
from bidsync.stores.entity_store import EntityStore
from utils.logger import logger as _default_logger
from utils.time import add_days_ms


def period_end_ms(cycle: BillingCycle, start_ms: int) -> int:
    return add_days_ms(start_ms, PERIOD_DAYS[cycle])


class SubscriptionService:
    """
    Subscription lifecycle: create (pending_payment) -> confirm (active) ->
    cancel (cancelled).

    The payment ``reference`` returned by create is opaque; it goes to the
    payment widget and comes back verbatim to ``confirm_subscription``.
    """

    def __init__(self, api, store: EntityStore, reconciler: ReconcileService,
                 gate: VerificationGate, logger=None) -> None:
        self._api = api
        self._store = store
        self._rec = reconciler
        self._gate = gate
        self._log = logger or _default_logger

    def current(self) -> Optional[Subscription]:
        return self._gate.active_subscription()

    def by_reference(self, reference: str) -> Optional[Subscription]:
        found = self._store.list(EntityKind.SUBSCRIPTION, lambda s: s.reference == reference)
        return found[0] if found else None

    def all(self) -> List[Subscription]:
        return self._store.list(EntityKind.SUBSCRIPTION)

    async def create_subscription(self, billingCycle: Any, plan: Any = Plan.BASIC) -> SubscriptionCheckout:
        try:
            cycle = BillingCycle(str(getattr(billingCycle, "value", billingCycle)).lower())
        except ValueError:
            raise ValidationError("invalid billing cycle", field="billingCycle", actual=billingCycle)
        try:
            plan_ = Plan(str(getattr(plan, "value", plan)).lower())
        except ValueError:
            raise ValidationError("invalid plan", field="plan", actual=plan)

        self._gate.require_no_active_subscription()

        temp = Subscription(
            id=make_temp_id("subscription"),
            plan=plan_,
            billingCycle=cycle,
            status=SubscriptionStatus.PENDING_PAYMENT,
            updatedAt=now_ms(),
        )
        self._store.put(EntityKind.SUBSCRIPTION, temp)

        try:
            checkout = await self._api.create_subscription(cycle.value, plan_.value)
        except (SyncError, asyncio.CancelledError):
            self._store.discard(EntityKind.SUBSCRIPTION, temp.id)
            raise

        self._store.discard(EntityKind.SUBSCRIPTION, temp.id)
        sub = checkout.subscription
        if sub.reference is None and checkout.reference:
            sub = dataclasses.replace(sub, reference=checkout.reference)
        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.SUBSCRIPTION, sub))
        self._log.info(f"create_subscription ok id={sub.id} plan={plan_.value} cycle={cycle.value}")
        return SubscriptionCheckout(
            subscription=self._store.get(EntityKind.SUBSCRIPTION, sub.id) or sub,
            reference=checkout.reference,
            authorizationUrl=checkout.authorizationUrl,
        )

    async def confirm_subscription(self, reference: str) -> Subscription:
        if not reference:
            raise ValidationError("payment reference is required", field="reference")

        known = self.by_reference(reference)
        if known is not None and known.status is SubscriptionStatus.ACTIVE:
            self._log.debug(f"confirm_subscription: {known.id} already active for reference, no-op")
            return known

        previous: Dict[str, Any] = {}
        if known is not None and known.status is SubscriptionStatus.PENDING_PAYMENT:
            previous = {"status": known.status, "currentPeriodEnd": known.currentPeriodEnd}
            self._rec.begin_optimistic(EntityKind.SUBSCRIPTION, known.id, previous)
            self._store.patch(EntityKind.SUBSCRIPTION, known.id, {
                "status": SubscriptionStatus.ACTIVE,
                "currentPeriodEnd": period_end_ms(known.billingCycle, now_ms()),
            })

        try:
            sub = await self._api.confirm_subscription(reference)
        except AlreadyActive:
            # payment callbacks may fire more than once
            if known is None:
                raise
            self._rec.end_optimistic(EntityKind.SUBSCRIPTION, known.id)
            self._log.info(f"confirm_subscription: server reports {known.id} already active")
            return self._store.get(EntityKind.SUBSCRIPTION, known.id)
        except (SyncError, asyncio.CancelledError):
            if known is not None:
                self._revert(known.id, previous)
            raise

        if sub.currentPeriodEnd is None:
            stamped = period_end_ms(sub.billingCycle, now_ms())
            sub = dataclasses.replace(sub, currentPeriodEnd=stamped)
        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.SUBSCRIPTION, sub))
        self._log.info(f"confirm_subscription ok id={sub.id} status={sub.status.value}")
        return self._store.get(EntityKind.SUBSCRIPTION, sub.id) or sub

    async def cancel_subscription(self, subscriptionId: str) -> Subscription:
        current = self._store.get(EntityKind.SUBSCRIPTION, subscriptionId)
        if current is None:
            raise ValidationError("unknown subscription", subscriptionId=subscriptionId)
        if current.status is SubscriptionStatus.CANCELLED:
            raise AlreadyCancelled(f"subscription {subscriptionId} is already cancelled")

        previous = {"status": current.status}
        self._rec.begin_optimistic(EntityKind.SUBSCRIPTION, subscriptionId, previous)
        self._store.patch(EntityKind.SUBSCRIPTION, subscriptionId, {"status": SubscriptionStatus.CANCELLED})

        try:
            sub = await self._api.cancel_subscription(subscriptionId)
        except (SyncError, asyncio.CancelledError):
            self._revert(subscriptionId, previous)
            raise

        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.SUBSCRIPTION, sub))
        self._log.info(f"cancel_subscription ok id={subscriptionId}")
        return self._store.get(EntityKind.SUBSCRIPTION, subscriptionId) or sub

    def _revert(self, subscriptionId: str, previous: Dict[str, Any]) -> None:
        self._rec.end_optimistic(EntityKind.SUBSCRIPTION, subscriptionId)
        if previous and self._store.get(EntityKind.SUBSCRIPTION, subscriptionId) is not None:
            self._store.patch(EntityKind.SUBSCRIPTION, subscriptionId, previous)
        self._log.debug(f"reverted optimistic patch on subscription {subscriptionId}")
