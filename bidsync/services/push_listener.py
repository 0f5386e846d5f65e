# bidsync/services/push_listener.py
import asyncio
import dataclasses
import contextlib
from typing import Any, Callable, Dict, Optional, Tuple

from bidsync.enums import EntityKind, Source, ShipmentStatus
from bidsync.errors import SyncError
from bidsync.payloads import Json, parse_shipment, parse_bid, parse_verification
from bidsync.models import Entity
from bidsync.services.reconcile_service import Fact, ReconcileService
from utils.logger import logger as _default_logger
from utils.time import utc_ms

Routed = Tuple[EntityKind, Entity]

EVENT_NEW_SHIPMENT = "new-shipment"
EVENT_SHIPMENT_UPDATED = "shipment-updated"
EVENT_VERIFICATION_UPDATED = "verification-updated"
EVENT_BID_UPDATED = "bid-updated"


def split_frame(frame: Any) -> Tuple[Optional[str], Any]:
    """``{"event": name, "data": payload}`` or socket.io style ``[name, payload]``."""
    if isinstance(frame, dict):
        return frame.get("event"), frame.get("data")
    if isinstance(frame, (list, tuple)) and frame and isinstance(frame[0], str):
        return frame[0], frame[1] if len(frame) > 1 else None
    return None, None


class PushListener:
    """
    Push channel consumer: drains frames from the websocket transport's queue,
    turns the named events it knows into ``source=push`` facts and hands them
    to the reconciler. Reconnects are the transport's business.
    """

    def __init__(self, ws_client, reconciler: ReconcileService,
                 actor_id: Callable[[], Optional[str]], logger=None,
                 queue_size: int = 1024) -> None:
        self._ws = ws_client
        self._rec = reconciler
        self._actor_id = actor_id
        self._log = logger or _default_logger
        self._q: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        if self._ws is not None:
            self._ws.bind_queue(self._q, put_timeout_ms=50, drop_when_full=True)
        self._ws_task: Optional[asyncio.Task] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._handlers: Dict[str, Callable[[Json], Optional[Routed]]] = {
            EVENT_NEW_SHIPMENT: self._on_new_shipment,
            EVENT_SHIPMENT_UPDATED: self._on_shipment_updated,
            EVENT_VERIFICATION_UPDATED: self._on_verification_updated,
            EVENT_BID_UPDATED: self._on_bid_updated,
        }

    @property
    def queue(self) -> asyncio.Queue:
        return self._q

    async def start(self) -> None:
        if self._ws is not None:
            self._ws_task = asyncio.create_task(self._ws.run_forever())
        self._drain_task = asyncio.create_task(self._drain())

    async def stop(self) -> None:
        if self._ws is not None:
            await self._ws.stop()
        for t in (self._ws_task, self._drain_task):
            if t is not None and not t.done():
                t.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await t
        self._ws_task = None
        self._drain_task = None

    async def _drain(self) -> None:
        while True:
            frame = await self._q.get()
            try:
                self.handle(frame)
            except Exception:
                self._log.exception(f"push: failed to handle frame {str(frame)[:256]}")
            finally:
                self._q.task_done()

    def handle(self, frame: Any, arrived_ms: Optional[int] = None) -> bool:
        """Route one frame; True if it reached the store."""
        event, data = split_frame(frame)
        handler = self._handlers.get(event or "")
        if handler is None:
            self._log.debug(f"push: ignoring event={event}")
            return False
        if not isinstance(data, dict):
            self._log.warning(f"push: event={event} without object payload")
            return False
        try:
            routed = handler(data)
        except SyncError as e:
            self._log.warning(f"push: undecodable {event} payload: {e}")
            return False
        if routed is None:
            return False
        kind, entity = routed
        stamp = entity.updatedAt or (arrived_ms if arrived_ms is not None else utc_ms())
        if not entity.updatedAt:
            entity = dataclasses.replace(entity, updatedAt=stamp)
        return self._rec.apply(Fact.of(Source.PUSH, kind, entity, stamp))

    def _on_new_shipment(self, data: Json) -> Optional[Routed]:
        shipment = parse_shipment(data)
        if shipment.ownerId == self._actor_id():
            self._log.debug(f"push: skip own new shipment {shipment.id}")
            return None
        if shipment.status is not ShipmentStatus.OPEN:
            self._log.debug(f"push: skip new shipment {shipment.id} status={shipment.status.value}")
            return None
        return EntityKind.SHIPMENT, shipment

    def _on_shipment_updated(self, data: Json) -> Optional[Routed]:
        return EntityKind.SHIPMENT, parse_shipment(data)

    def _on_verification_updated(self, data: Json) -> Optional[Routed]:
        actor_id = self._actor_id()
        status = parse_verification(data)
        if actor_id and status.id != actor_id:
            self._log.debug(f"push: skip verification update for other actor {status.id}")
            return None
        return EntityKind.VERIFICATION, status

    def _on_bid_updated(self, data: Json) -> Optional[Routed]:
        return EntityKind.BID, parse_bid(data)
