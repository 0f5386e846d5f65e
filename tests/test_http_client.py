# tests/test_http_client.py
import json
from decimal import Decimal

import aiohttp
import pytest
import pytest_asyncio
from aioresponses import aioresponses, CallbackResult

from infra.http_client import HttpClient, HttpError
from bidsync.enums import BidStatus, ShipmentStatus, SubscriptionStatus
from bidsync.errors import Transient, DuplicateBid, Unverified, AlreadyActive
from bidsync.services.endpoints import Endpoints
from bidsync.services.marketplace_api import MarketplaceApi

BASE = "https://api.example.test/api"


def envelope(data=None, success=True, message=""):
    return {"success": success, "message": message, "data": data}


@pytest_asyncio.fixture
async def http_client():
    async with HttpClient(BASE, "secret-token-123", max_attempts=3, backoff_ms=1) as client:
        yield client


@pytest.mark.asyncio
async def test_bearer_token_and_json_body(http_client: HttpClient):
    def _assert_request(url, **kwargs):
        headers = kwargs["headers"]
        assert headers["Authorization"] == "Bearer secret-token-123"
        assert headers["Content-Type"] == "application/json"
        # decimals travel as strings
        assert json.loads(kwargs["data"]) == {"price": "100.50", "eta": "3 days"}
        return CallbackResult(status=200, payload=envelope({"ok": True}))

    with aioresponses() as m:
        m.post(f"{BASE}/bids", callback=_assert_request)
        resp = await http_client.post("/bids", {"price": Decimal("100.50"), "eta": "3 days"})
        assert resp["data"] == {"ok": True}

@pytest.mark.asyncio
async def test_get_retries_on_5xx(http_client: HttpClient):
    with aioresponses() as m:
        m.get(f"{BASE}/bids/mine", status=502, payload={"message": "bad gateway"})
        m.get(f"{BASE}/bids/mine", payload=envelope([]))
        resp = await http_client.get("/bids/mine")
        assert resp["data"] == []

@pytest.mark.asyncio
async def test_post_is_not_retried(http_client: HttpClient):
    with aioresponses() as m:
        m.post(f"{BASE}/bids", status=503, payload={"message": "unavailable"})
        m.post(f"{BASE}/bids", payload=envelope({"_id": "never"}))
        with pytest.raises(HttpError) as ei:
            await http_client.post("/bids", {"price": "1"})
        assert ei.value.status == 503
        assert ei.value.message == "unavailable"

@pytest.mark.asyncio
async def test_success_false_raises(http_client: HttpClient):
    with aioresponses() as m:
        m.get(f"{BASE}/auth/profile", payload=envelope(None, success=False, message="Token expired"))
        with pytest.raises(HttpError) as ei:
            await http_client.get("/auth/profile")
        assert ei.value.message == "Token expired"

@pytest.mark.asyncio
async def test_network_error_maps_to_599():
    async with HttpClient(BASE, max_attempts=1) as client:
        with aioresponses() as m:
            m.get(f"{BASE}/bids/mine", exception=aiohttp.ClientConnectionError("refused"))
            with pytest.raises(HttpError) as ei:
                await client.get("/bids/mine")
    assert ei.value.status == 599

@pytest.mark.asyncio
async def test_api_classifies_transport_errors(http_client: HttpClient):
    api = MarketplaceApi(http_client)
    with aioresponses() as m:
        m.post(f"{BASE}/bids", status=400,
               payload={"success": False, "message": "You have already placed a bid on this shipment"})
        with pytest.raises(DuplicateBid):
            await api.create_bid("ship-1", Decimal("100"), "USD", "3 days")

        m.post(f"{BASE}/bids", status=403,
               payload={"success": False, "message": "Account verification required"})
        with pytest.raises(Unverified):
            await api.create_bid("ship-1", Decimal("100"), "USD", "3 days")

        m.post(f"{BASE}/subscriptions/confirm", status=400,
               payload={"success": False, "message": "You already have an active subscription"})
        with pytest.raises(AlreadyActive):
            await api.confirm_subscription("ref-1")

        for _ in range(3):
            m.get(f"{BASE}/bids/mine", status=500, payload={"message": "boom"})
        with pytest.raises(Transient):
            await api.list_my_bids()

@pytest.mark.asyncio
async def test_api_create_bid_decodes_envelope(http_client: HttpClient):
    api = MarketplaceApi(http_client)
    with aioresponses() as m:
        m.post(f"{BASE}/bids", payload=envelope({
            "_id": "bid-9",
            "shipment": {"_id": "ship-1", "shipmentTitle": "Lagos"},
            "carrier": {"_id": "carrier-1", "name": "Ada"},
            "price": 100, "currency": "usd", "eta": "3 days", "status": "pending",
            "createdAt": "2023-11-14T22:13:20.000Z", "updatedAt": "2023-11-14T22:13:21.000Z",
            "conversationId": "conv-1",
        }))
        bid, conversation_id = await api.create_bid("ship-1", Decimal("100"), "USD", "3 days")

    assert bid.id == "bid-9"
    assert bid.shipmentId == "ship-1"
    assert bid.carrierId == "carrier-1"
    assert bid.price == Decimal("100")
    assert bid.status is BidStatus.PENDING
    assert bid.updatedAt == 1_700_000_001_000
    assert conversation_id == "conv-1"

@pytest.mark.asyncio
async def test_api_accept_returns_conversation(http_client: HttpClient):
    api = MarketplaceApi(http_client)
    with aioresponses() as m:
        m.post(f"{BASE}/bids/bid-9/accept", payload=envelope({
            "bid": {"_id": "bid-9", "shipment": "ship-1", "carrier": "c1", "price": "90", "status": "accepted"},
            "conversation": {"_id": "conv-3"},
        }))
        bid, conversation_id = await api.accept_bid("bid-9")
    assert bid.status is BidStatus.ACCEPTED
    assert conversation_id == "conv-3"

@pytest.mark.asyncio
async def test_api_create_subscription(http_client: HttpClient):
    api = MarketplaceApi(http_client)
    with aioresponses() as m:
        m.post(f"{BASE}/subscriptions/create", payload=envelope({
            "subscription": {"_id": "sub-1", "plan": "basic", "billingCycle": "monthly",
                             "status": "inactive", "amount": 5000, "currency": "NGN"},
            "reference": "ref-1",
            "authorizationUrl": "https://checkout.example/ref-1",
        }))
        checkout = await api.create_subscription("monthly", "basic")
    assert checkout.reference == "ref-1"
    assert checkout.subscription.status is SubscriptionStatus.PENDING_PAYMENT
    assert checkout.authorizationUrl == "https://checkout.example/ref-1"

@pytest.mark.asyncio
async def test_api_list_skips_undecodable_records(http_client: HttpClient):
    api = MarketplaceApi(http_client)
    with aioresponses() as m:
        m.get(f"{BASE}/shipments/my-active", payload=envelope([
            {"_id": "s1", "user": "owner-1", "status": "accepted"},
            {"_id": "s2", "user": "owner-1", "status": "on_hold"},
            {"user": "owner-1", "status": "open"},
            {"_id": "s4", "user": "owner-1", "status": "delivered"},
        ]))
        shipments = await api.list_my_active_shipments()
    assert [s.id for s in shipments] == ["s1", "s4"]
    assert shipments[0].status is ShipmentStatus.IN_PROGRESS
    assert shipments[1].status is ShipmentStatus.COMPLETED

@pytest.mark.asyncio
async def test_api_decision_method_follows_endpoints(http_client: HttpClient):
    api = MarketplaceApi(http_client, Endpoints(bid_decision_method="PUT"))
    with aioresponses() as m:
        m.put(f"{BASE}/bids/bid-9/accept", payload=envelope({
            "bid": {"_id": "bid-9", "shipment": "ship-1", "carrier": "c1", "price": "90", "status": "accepted"},
            "conversationId": "conv-4",
        }))
        m.put(f"{BASE}/bids/bid-8/reject", payload=envelope(
            {"_id": "bid-8", "shipment": "ship-1", "carrier": "c2", "price": "95", "status": "rejected"},
        ))
        bid, conversation_id = await api.accept_bid("bid-9")
        rejected = await api.reject_bid("bid-8")
    assert bid.status is BidStatus.ACCEPTED
    assert conversation_id == "conv-4"
    assert rejected.status is BidStatus.REJECTED
