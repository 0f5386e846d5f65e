# bidsync/services/marketplace_api.py
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from infra.http_client import HttpError
from bidsync.errors import SyncError, classify_http_error
from bidsync.models import Bid, Shipment, Subscription, Profile, SubscriptionCheckout
from bidsync.payloads import (
    Json, unwrap, as_list, parse_bid, parse_shipment, parse_subscription, parse_profile,
)
from bidsync.services.endpoints import Endpoints
from utils.logger import logger as _default_logger

T = TypeVar("T")


class MarketplaceApi:
    """
    Typed facade over the marketplace REST endpoints.

    Every transport failure leaves this class as a ``SyncError`` subclass,
    decoded with ``classify_http_error``; callers never see ``HttpError``.
    """

    def __init__(self, http_client, endpoints: Optional[Endpoints] = None, logger=None) -> None:
        self._http = http_client
        self._ep = endpoints or Endpoints()
        self._log = logger or _default_logger

    async def _call(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self._http.request(method, path, json_body=json_body)
        except HttpError as e:
            raise classify_http_error(e.status, e.message) from e

    def _decode_each(self, parse: Callable[[Json], T], payload: Any, what: str) -> List[T]:
        """Decode list items one by one; a record that fails to decode is logged and skipped."""
        out: List[T] = []
        for raw in as_list(payload):
            try:
                out.append(parse(raw))
            except SyncError as e:
                self._log.warning(f"skipping undecodable {what}: {e}")
        return out

    @property
    def _decision_method(self) -> str:
        return self._ep.bid_decision_method.upper()

    # ---- bids ------------------------------------------------------------------
    async def create_bid(self, shipmentId: str, price: Decimal, currency: str,
                         eta: str, message: Optional[str] = None) -> Tuple[Bid, Optional[str]]:
        body: Json = {"shipmentId": shipmentId, "price": price, "currency": currency, "eta": eta}
        if message is not None:
            body["message"] = message
        raw = unwrap(await self._call("POST", self._ep.bids, body))
        return parse_bid(raw), _conversation_id(raw)

    async def edit_bid(self, bidId: str, price: Decimal, eta: str, message: Optional[str] = None) -> Bid:
        body: Json = {"price": price, "eta": eta}
        if message is not None:
            body["message"] = message
        raw = unwrap(await self._call("PUT", self._ep.bid.format(id=bidId), body))
        return parse_bid(raw)

    async def accept_bid(self, bidId: str) -> Tuple[Bid, Optional[str]]:
        raw = unwrap(await self._call(self._decision_method, self._ep.bid_accept.format(id=bidId)))
        bid_raw = raw.get("bid") if isinstance(raw.get("bid"), dict) else raw
        return parse_bid(bid_raw), _conversation_id(raw)

    async def reject_bid(self, bidId: str) -> Bid:
        raw = unwrap(await self._call(self._decision_method, self._ep.bid_reject.format(id=bidId)))
        bid_raw = raw.get("bid") if isinstance(raw.get("bid"), dict) else raw
        return parse_bid(bid_raw)

    async def list_my_bids(self) -> List[Bid]:
        return self._decode_each(parse_bid, await self._call("GET", self._ep.bids_mine), "bid")

    async def list_bids_on_my_shipments(self) -> List[Bid]:
        raw = await self._call("GET", self._ep.bids_on_my_shipments)
        return self._decode_each(parse_bid, raw, "bid")

    async def list_bids_for_shipment(self, shipmentId: str) -> List[Bid]:
        path = self._ep.bids_for_shipment.format(id=shipmentId)
        return self._decode_each(parse_bid, await self._call("GET", path), "bid")

    # ---- shipments -------------------------------------------------------------
    async def list_available_shipments(self) -> List[Shipment]:
        raw = await self._call("GET", self._ep.shipments_available)
        return self._decode_each(parse_shipment, raw, "shipment")

    async def list_my_active_shipments(self) -> List[Shipment]:
        raw = await self._call("GET", self._ep.shipments_my_active)
        return self._decode_each(parse_shipment, raw, "shipment")

    # ---- subscriptions ---------------------------------------------------------
    async def create_subscription(self, billingCycle: str, plan: str) -> SubscriptionCheckout:
        raw = unwrap(await self._call(
            "POST", self._ep.subscription_create, {"billingCycle": billingCycle, "plan": plan}
        ))
        sub_raw = raw.get("subscription") if isinstance(raw.get("subscription"), dict) else raw
        sub = parse_subscription(sub_raw)
        reference = raw.get("reference") or sub.reference or ""
        return SubscriptionCheckout(
            subscription=sub,
            reference=str(reference),
            authorizationUrl=raw.get("authorizationUrl"),
        )

    async def confirm_subscription(self, reference: str) -> Subscription:
        raw = unwrap(await self._call("POST", self._ep.subscription_confirm, {"reference": reference}))
        return parse_subscription(raw)

    async def list_my_subscriptions(self) -> List[Subscription]:
        raw = await self._call("GET", self._ep.subscriptions_mine)
        return self._decode_each(parse_subscription, raw, "subscription")

    async def cancel_subscription(self, subscriptionId: str) -> Subscription:
        path = self._ep.subscription_cancel.format(id=subscriptionId)
        return parse_subscription(unwrap(await self._call("DELETE", path)))

    # ---- auth ------------------------------------------------------------------
    async def get_profile(self) -> Profile:
        return parse_profile(await self._call("GET", self._ep.profile))


def _conversation_id(raw: Json) -> Optional[str]:
    conv = raw.get("conversationId") or raw.get("conversation")
    if isinstance(conv, dict):
        conv = conv.get("_id") or conv.get("id")
    return str(conv) if conv else None
