# bidsync/services/verification_gate.py
from typing import Optional

from bidsync.enums import EntityKind, SubscriptionStatus, VerificationValue
from bidsync.errors import Unverified, AlreadyActive
from bidsync.models import VerificationStatus, Subscription
from bidsync.stores.entity_store import EntityStore


def can_write(status: Optional[VerificationStatus]) -> bool:
    """Write capability derived from the actor's verification status."""
    return status is not None and status.value is VerificationValue.VERIFIED


class VerificationGate:
    """
    Capability checks for mutation commands, evaluated against whatever the
    store currently holds for the signed-in actor.
    """

    def __init__(self, store: EntityStore, actor_id: Optional[str] = None) -> None:
        self._store = store
        self.actor_id = actor_id

    def status(self) -> Optional[VerificationStatus]:
        if not self.actor_id:
            return None
        return self._store.get(EntityKind.VERIFICATION, self.actor_id)

    def can_write(self) -> bool:
        return can_write(self.status())

    def require_write(self) -> None:
        if not self.can_write():
            st = self.status()
            value = st.value.value if st else "unknown"
            raise Unverified(f"actor {self.actor_id} is not verified (status={value})")

    def active_subscription(self) -> Optional[Subscription]:
        active = self._store.list(
            EntityKind.SUBSCRIPTION, lambda s: s.status is SubscriptionStatus.ACTIVE
        )
        return active[0] if active else None

    def require_no_active_subscription(self) -> None:
        active = self.active_subscription()
        if active is not None:
            raise AlreadyActive(f"subscription {active.id} is already active")

    def wants_polling(self) -> bool:
        """Poll only until the actor is verified."""
        return not self.can_write()
