# bidsync/services/reconcile_service.py
import dataclasses
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

from bidsync.enums import (
    EntityKind, Source, BidStatus, ShipmentStatus, SubscriptionStatus,
)
from bidsync.idempotency import is_temp_id
from bidsync.models import Entity
from bidsync.stores.entity_store import EntityStore
from utils.logger import logger as _default_logger

STALE = "stale"
BACKWARD = "backward"
CONFLICTING_ACCEPT = "conflicting_accept"

# Allowed forward moves per status (transitively closed). Kinds missing here
# are unordered and only the timestamp rule applies.
_FORWARD: Dict[EntityKind, Dict[object, FrozenSet[object]]] = {
    EntityKind.BID: {
        BidStatus.PENDING: frozenset({BidStatus.ACCEPTED, BidStatus.REJECTED}),
        BidStatus.ACCEPTED: frozenset(),
        BidStatus.REJECTED: frozenset(),
    },
    EntityKind.SUBSCRIPTION: {
        SubscriptionStatus.PENDING_PAYMENT: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED}),
        SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.CANCELLED}),
        SubscriptionStatus.CANCELLED: frozenset(),
    },
    EntityKind.SHIPMENT: {
        ShipmentStatus.OPEN: frozenset({
            ShipmentStatus.BIDDING_CLOSED, ShipmentStatus.IN_PROGRESS,
            ShipmentStatus.COMPLETED, ShipmentStatus.CANCELLED,
        }),
        ShipmentStatus.BIDDING_CLOSED: frozenset({
            ShipmentStatus.IN_PROGRESS, ShipmentStatus.COMPLETED, ShipmentStatus.CANCELLED,
        }),
        ShipmentStatus.IN_PROGRESS: frozenset({ShipmentStatus.COMPLETED, ShipmentStatus.CANCELLED}),
        ShipmentStatus.COMPLETED: frozenset(),
        ShipmentStatus.CANCELLED: frozenset(),
    },
}


def is_forward(kind: EntityKind, old, new) -> bool:
    """True if moving from status ``old`` to ``new`` respects the kind's partial order."""
    order = _FORWARD.get(kind)
    if order is None or old == new:
        return True
    return new in order.get(old, frozenset())


@dataclass(frozen=True)
class Fact:
    """One incoming record from a command response, a poll or a push event."""
    source: Source
    kind: EntityKind
    entity: Entity
    serverTimestamp: int

    @classmethod
    def of(cls, source: Source, kind: EntityKind, entity: Entity,
           serverTimestamp: Optional[int] = None) -> "Fact":
        ts = entity.updatedAt if serverTimestamp is None else serverTimestamp
        return cls(source=source, kind=kind, entity=entity, serverTimestamp=ts)


@dataclass(frozen=True)
class Discard:
    fact: Fact
    reason: str


DiscardHook = Callable[[Discard], None]


class ReconcileService:
    """
    Merges command responses, poll results and push events into the
    EntityStore.

    Per entity id: stale facts (older than the stored ``updatedAt``) and
    facts moving status backwards are discarded; everything else replaces
    the stored record, except fields still carrying an unacknowledged
    optimistic value, which survive until a ``command`` fact for the same id
    arrives. Discards go to the log and to registered diagnostic hooks.
    """

    def __init__(self, store: EntityStore, logger=None) -> None:
        self._store = store
        self._log = logger or _default_logger
        self._optimistic: Dict[Tuple[EntityKind, str], Set[str]] = {}
        self._hooks: List[DiscardHook] = []

    # ---- diagnostics -----------------------------------------------------------
    def add_discard_hook(self, hook: DiscardHook) -> Callable[[], None]:
        self._hooks.append(hook)

        def _remove() -> None:
            if hook in self._hooks:
                self._hooks.remove(hook)

        return _remove

    def _discard(self, fact: Fact, reason: str, current: Optional[Entity] = None) -> bool:
        msg = (f"reconcile discard reason={reason} source={fact.source.value} "
               f"{fact.kind.value}={fact.entity.id} ts={fact.serverTimestamp}")
        if current is not None:
            msg += f" stored_ts={current.updatedAt}"
            status = getattr(current, "status", None)
            if status is not None:
                msg += f" {getattr(status, 'value', status)}->{getattr(fact.entity.status, 'value', fact.entity.status)}"
        if reason == STALE:
            self._log.debug(msg)
        else:
            self._log.info(msg)
        for hook in list(self._hooks):
            try:
                hook(Discard(fact=fact, reason=reason))
            except Exception:
                self._log.exception("discard hook failed")
        return False

    # ---- optimistic bookkeeping ------------------------------------------------
    def begin_optimistic(self, kind: EntityKind, entity_id: str, fields: Iterable[str]) -> None:
        """Mark fields of a record as locally changed and not yet acknowledged."""
        self._optimistic.setdefault((kind, entity_id), set()).update(fields)

    def end_optimistic(self, kind: EntityKind, entity_id: str) -> None:
        self._optimistic.pop((kind, entity_id), None)

    def optimistic_fields(self, kind: EntityKind, entity_id: str) -> FrozenSet[str]:
        return frozenset(self._optimistic.get((kind, entity_id), ()))

    # ---- merge -----------------------------------------------------------------
    def apply(self, fact: Fact) -> bool:
        """Merge one fact; returns True if the store was written."""
        key = (fact.kind, fact.entity.id)
        try:
            return self._merge(fact)
        finally:
            if fact.source is Source.COMMAND:
                self._optimistic.pop(key, None)

    def apply_many(self, facts: Iterable[Fact]) -> int:
        return sum(1 for f in facts if self.apply(f))

    def ingest(self, source: Source, kind: EntityKind, entities: Iterable[Entity]) -> int:
        """Reconcile a batch of server records, each stamped with its own ``updatedAt``."""
        return self.apply_many(Fact.of(source, kind, e) for e in entities)

    def _merge(self, fact: Fact) -> bool:
        kind, incoming = fact.kind, fact.entity
        current = self._store.get(kind, incoming.id)

        if current is None:
            if self._conflicting_accept(kind, incoming):
                return self._discard(fact, CONFLICTING_ACCEPT)
            self._supersede_temps(kind, incoming)
            self._store.put(kind, incoming)
            return True

        if fact.serverTimestamp < current.updatedAt:
            return self._discard(fact, STALE, current)

        old_status = getattr(current, "status", None)
        new_status = getattr(incoming, "status", None)
        if not is_forward(kind, old_status, new_status):
            return self._discard(fact, BACKWARD, current)

        if self._conflicting_accept(kind, incoming):
            return self._discard(fact, CONFLICTING_ACCEPT, current)

        if fact.source is not Source.COMMAND:
            pending = self._optimistic.get((kind, incoming.id))
            if pending:
                keep = {f: getattr(current, f) for f in pending}
                incoming = dataclasses.replace(incoming, **keep)

        self._store.put(kind, incoming)
        return True

    def _conflicting_accept(self, kind: EntityKind, incoming: Entity) -> bool:
        if kind is not EntityKind.BID or incoming.status is not BidStatus.ACCEPTED:
            return False
        return bool(self._store.list(
            EntityKind.BID,
            lambda b: b.id != incoming.id
            and b.shipmentId == incoming.shipmentId
            and b.status is BidStatus.ACCEPTED,
        ))

    def _supersede_temps(self, kind: EntityKind, incoming: Entity) -> None:
        """A server record replaces the local optimistic record it stands for."""
        if is_temp_id(incoming.id):
            return
        if kind is EntityKind.BID:
            temps = self._store.list(
                kind,
                lambda b: is_temp_id(b.id)
                and b.shipmentId == incoming.shipmentId
                and b.carrierId == incoming.carrierId,
            )
        elif kind is EntityKind.SUBSCRIPTION and incoming.status is SubscriptionStatus.PENDING_PAYMENT:
            # temp updatedAt is its local creation time; older server records
            # are leftovers of abandoned checkouts
            temps = self._store.list(
                kind,
                lambda s: is_temp_id(s.id)
                and s.plan is incoming.plan
                and s.billingCycle is incoming.billingCycle
                and incoming.updatedAt >= s.updatedAt,
            )
        else:
            return
        for temp in temps:
            self._log.debug(f"reconcile: {kind.value} {incoming.id} supersedes optimistic {temp.id}")
            self._optimistic.pop((kind, temp.id), None)
            self._store.discard(kind, temp.id)
