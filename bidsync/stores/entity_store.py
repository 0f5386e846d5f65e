# bidsync/stores/entity_store.py
import dataclasses
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Any

from bidsync.enums import EntityKind
from bidsync.event_bus import EventBus, topic_for
from bidsync.models import Entity

ChangeCallback = Callable[[str, Optional[Entity]], None]

class EntityStore:
    """
    In-memory normalized mirror of bids, shipments, subscriptions and
    verification status, keyed by (kind, id).

    Entities are frozen dataclasses, so a record handed out by ``get`` can
    never be mutated behind the store's back. Every write fires the kind's
    subscribers synchronously with ``(entity_id, new_value)``.
    """

    def __init__(self, event_bus: Optional[EventBus] = None) -> None:
        self._bus = event_bus or EventBus()
        self._data: Dict[EntityKind, Dict[str, Entity]] = {k: {} for k in EntityKind}

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Entity]:
        return self._data[kind].get(entity_id)

    def put(self, kind: EntityKind, entity: Entity) -> Entity:
        """Insert or fully replace a record."""
        self._data[kind][entity.id] = entity
        self._bus.publish(topic_for(kind.value), entity.id, entity)
        return entity

    def patch(self, kind: EntityKind, entity_id: str, partial: Mapping[str, Any]) -> Entity:
        """Shallow-merge ``partial`` into the stored record."""
        cur = self._data[kind].get(entity_id)
        if cur is None:
            raise KeyError(f"cannot patch unknown {kind.value} {entity_id}")
        new = dataclasses.replace(cur, **dict(partial))
        self._data[kind][entity_id] = new
        self._bus.publish(topic_for(kind.value), entity_id, new)
        return new

    def discard(self, kind: EntityKind, entity_id: str) -> bool:
        """
        Drop a local optimistic record that the server never acknowledged.
        Acknowledged records are only ever transitioned, never removed.
        """
        if self._data[kind].pop(entity_id, None) is None:
            return False
        self._bus.publish(topic_for(kind.value), entity_id, None)
        return True

    def subscribe(self, kind: EntityKind, callback: ChangeCallback) -> Callable[[], None]:
        return self._bus.subscribe(topic_for(kind.value), callback)

    def list(self, kind: EntityKind, predicate: Optional[Callable[[Any], bool]] = None) -> List[Entity]:
        items: Iterable[Entity] = self._data[kind].values()
        if predicate is not None:
            return [e for e in items if predicate(e)]
        return list(items)

    def __len__(self) -> int:
        return sum(len(v) for v in self._data.values())
