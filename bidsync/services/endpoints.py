# bidsync/services/endpoints.py
from dataclasses import dataclass, fields
from typing import Any, Mapping

@dataclass
class Endpoints:
    # bids
    bids: str = "/bids"
    bid: str = "/bids/{id}"
    bid_accept: str = "/bids/{id}/accept"
    bid_reject: str = "/bids/{id}/reject"
    bids_mine: str = "/bids/mine"
    bids_on_my_shipments: str = "/bids/on-my-shipments"
    bids_for_shipment: str = "/bids/shipment/{id}"
    # verb for accept/reject; the marketplace backend routes them as PUT
    bid_decision_method: str = "POST"

    # shipments
    shipments_available: str = "/shipments/available-for-bidding"
    shipments_my_active: str = "/shipments/my-active"

    # subscriptions
    subscription_create: str = "/subscriptions/create"
    subscription_confirm: str = "/subscriptions/confirm"
    subscriptions_mine: str = "/subscriptions/my-subscriptions"
    subscription_cancel: str = "/subscriptions/{id}/cancel"

    # auth
    profile: str = "/auth/profile"


def make_endpoints_from_cfg(cfg: Mapping[str, Any]) -> Endpoints:
    """Default paths, overridden by the optional ``endpoints`` section."""
    overrides = dict(cfg.get("endpoints") or {})
    known = {f.name for f in fields(Endpoints)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Invalid cfg, unknown endpoints: {sorted(unknown)}")
    ep = Endpoints(**overrides)
    if ep.bid_decision_method.upper() not in ("POST", "PUT"):
        raise ValueError(f"Invalid cfg, bid_decision_method must be POST or PUT: {ep.bid_decision_method}")
    return ep
