# bidsync/services/bid_service.py
import asyncio
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from bidsync.enums import (
    EntityKind, Source, BidStatus, ShipmentStatus, ACTIVE_BID_STATUSES, SUPPORTED_CURRENCIES,
)
from bidsync.errors import SyncError, ValidationError, DuplicateBid, NotPending, Conflict
from bidsync.idempotency import make_temp_id, now_ms
from bidsync.models import Bid, BidResult
from bidsync.services.reconcile_service import Fact, ReconcileService
from bidsync.services.verification_gate import VerificationGate
from bidsync.stores.entity_store import EntityStore
from utils.logger import logger as _default_logger

MAX_MESSAGE_LEN = 500


def _price(x: Any) -> Decimal:
    try:
        px = x if isinstance(x, Decimal) else Decimal(str(x))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError("price must be a number", field="price", actual=x)
    if not px.is_finite() or px <= 0:
        raise ValidationError("price must be > 0", field="price", actual=x)
    return px

def _eta(x: Any) -> str:
    eta = str(x or "").strip()
    if not eta:
        raise ValidationError("eta is required", field="eta")
    return eta

def _message(x: Optional[str]) -> Optional[str]:
    if x is None:
        return None
    if len(x) > MAX_MESSAGE_LEN:
        raise ValidationError(f"message exceeds {MAX_MESSAGE_LEN} chars", field="message", actual=len(x))
    return x


class BidService:
    """
    Bid commands: create/edit for carriers, accept/reject for shipment owners.

    Each command validates against the store, applies an optimistic patch,
    calls the API, and reconciles the server answer with ``source=command``.
    Any failure, including cancellation, reverts the optimistic patch before
    the error propagates.
    """

    def __init__(self, api, store: EntityStore, reconciler: ReconcileService,
                 gate: VerificationGate, logger=None) -> None:
        self._api = api
        self._store = store
        self._rec = reconciler
        self._gate = gate
        self._log = logger or _default_logger

    @property
    def actor_id(self) -> Optional[str]:
        return self._gate.actor_id

    # ---- queries ---------------------------------------------------------------
    def active_bid_for(self, shipmentId: str, carrierId: Optional[str] = None) -> Optional[Bid]:
        carrier = carrierId or self.actor_id
        found = self._store.list(
            EntityKind.BID,
            lambda b: b.shipmentId == shipmentId
            and b.carrierId == carrier
            and b.status in ACTIVE_BID_STATUSES,
        )
        return found[0] if found else None

    def my_bids(self) -> List[Bid]:
        return self._store.list(EntityKind.BID, lambda b: b.carrierId == self.actor_id)

    async def load_bids_for_shipment(self, shipmentId: str) -> List[Bid]:
        """Pull every bid on one shipment (owner view) into the store."""
        bids = await self._api.list_bids_for_shipment(shipmentId)
        self._rec.ingest(Source.POLL, EntityKind.BID, bids)
        return self._store.list(EntityKind.BID, lambda b: b.shipmentId == shipmentId)

    # ---- carrier commands ------------------------------------------------------
    async def create_bid(self, shipmentId: str, price: Any, currency: str, eta: str,
                         message: Optional[str] = None) -> BidResult:
        if not shipmentId:
            raise ValidationError("shipmentId is required", field="shipmentId")
        px = _price(price)
        ccy = str(currency or "").upper()
        if ccy not in SUPPORTED_CURRENCIES:
            raise ValidationError("unsupported currency", field="currency", actual=currency)
        eta = _eta(eta)
        message = _message(message)

        self._gate.require_write()

        shipment = self._store.get(EntityKind.SHIPMENT, shipmentId)
        if shipment is not None and shipment.status is not ShipmentStatus.OPEN:
            raise ValidationError("shipment is not open for bidding",
                                  shipmentId=shipmentId, status=shipment.status.value)

        existing = self.active_bid_for(shipmentId)
        if existing is not None:
            raise DuplicateBid(f"bid {existing.id} is already {existing.status.value} on shipment {shipmentId}")

        temp = Bid(
            id=make_temp_id("bid"),
            shipmentId=shipmentId,
            carrierId=self.actor_id,
            price=px,
            currency=ccy,
            eta=eta,
            message=message or "",
            status=BidStatus.PENDING,
            createdAt=now_ms(),
        )
        self._store.put(EntityKind.BID, temp)
        self._log.debug(f"create_bid optimistic id={temp.id} shipment={shipmentId} price={px} {ccy}")

        try:
            bid, conversation_id = await self._api.create_bid(shipmentId, px, ccy, eta, message)
        except Conflict as e:
            self._store.discard(EntityKind.BID, temp.id)
            raise DuplicateBid(str(e)) from e
        except (SyncError, asyncio.CancelledError):
            self._store.discard(EntityKind.BID, temp.id)
            raise

        self._store.discard(EntityKind.BID, temp.id)
        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.BID, bid))
        self._log.info(f"create_bid ok id={bid.id} shipment={shipmentId} conversation={conversation_id}")
        return BidResult(bid=self._store.get(EntityKind.BID, bid.id) or bid,
                         conversationId=conversation_id)

    async def edit_bid(self, bidId: str, price: Any, eta: str, message: Optional[str] = None) -> Bid:
        px = _price(price)
        eta = _eta(eta)
        message = _message(message)

        self._gate.require_write()

        current = self._require_bid(bidId)
        if current.status is not BidStatus.PENDING:
            raise NotPending(f"bid {bidId} is {current.status.value}")

        changes: Dict[str, Any] = {"price": px, "eta": eta}
        if message is not None:
            changes["message"] = message
        previous = {k: getattr(current, k) for k in changes}

        self._rec.begin_optimistic(EntityKind.BID, bidId, changes)
        self._store.patch(EntityKind.BID, bidId, changes)

        try:
            bid = await self._api.edit_bid(bidId, px, eta, message)
        except (SyncError, asyncio.CancelledError):
            self._revert(bidId, previous)
            raise

        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.BID, bid))
        self._log.info(f"edit_bid ok id={bidId} price={px} eta={eta}")
        return self._store.get(EntityKind.BID, bidId) or bid

    # ---- owner commands --------------------------------------------------------
    async def accept_bid(self, bidId: str) -> BidResult:
        self._prepare_decision(bidId, BidStatus.ACCEPTED)
        try:
            bid, conversation_id = await self._api.accept_bid(bidId)
        except (SyncError, asyncio.CancelledError):
            self._revert(bidId, {"status": BidStatus.PENDING})
            raise
        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.BID, bid))
        self._log.info(f"accept_bid ok id={bidId} conversation={conversation_id}")
        return BidResult(bid=self._store.get(EntityKind.BID, bidId) or bid,
                            conversationId=conversation_id)

    async def reject_bid(self, bidId: str) -> Bid:
        self._prepare_decision(bidId, BidStatus.REJECTED)
        try:
            bid = await self._api.reject_bid(bidId)
        except (SyncError, asyncio.CancelledError):
            self._revert(bidId, {"status": BidStatus.PENDING})
            raise
        self._rec.apply(Fact.of(Source.COMMAND, EntityKind.BID, bid))
        self._log.info(f"reject_bid ok id={bidId}")
        return self._store.get(EntityKind.BID, bidId) or bid

    # ---- internals -------------------------------------------------------------
    def _require_bid(self, bidId: str) -> Bid:
        bid = self._store.get(EntityKind.BID, bidId)
        if bid is None:
            raise ValidationError("unknown bid", bidId=bidId)
        return bid

    def _prepare_decision(self, bidId: str, status: BidStatus) -> None:
        """Owner check plus optimistic status patch for accept/reject."""
        current = self._require_bid(bidId)
        shipment = self._store.get(EntityKind.SHIPMENT, current.shipmentId)
        if shipment is not None and shipment.ownerId != self.actor_id:
            raise ValidationError("only the shipment owner can decide on bids",
                                  bidId=bidId, shipmentId=current.shipmentId)
        if current.status is not BidStatus.PENDING:
            raise NotPending(f"bid {bidId} is {current.status.value}")
        if status is BidStatus.ACCEPTED:
            sibling = self._store.list(
                EntityKind.BID,
                lambda b: b.shipmentId == current.shipmentId and b.status is BidStatus.ACCEPTED,
            )
            if sibling:
                raise Conflict(f"bid {sibling[0].id} is already accepted on shipment {current.shipmentId}")
        self._rec.begin_optimistic(EntityKind.BID, bidId, ("status",))
        self._store.patch(EntityKind.BID, bidId, {"status": status})

    def _revert(self, bidId: str, previous: Dict[str, Any]) -> None:
        self._rec.end_optimistic(EntityKind.BID, bidId)
        if self._store.get(EntityKind.BID, bidId) is not None:
            self._store.patch(EntityKind.BID, bidId, previous)
        self._log.debug(f"reverted optimistic patch on bid {bidId}: {sorted(previous)}")
