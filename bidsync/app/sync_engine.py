# bidsync/app/sync_engine.py
import asyncio
from typing import Any, Callable, Mapping, Optional

from bidsync.config import EngineSettings
from bidsync.enums import EntityKind, Source
from bidsync.models import Actor, VerificationStatus
from bidsync.services.bid_service import BidService
from bidsync.services.endpoints import Endpoints, make_endpoints_from_cfg
from bidsync.services.marketplace_api import MarketplaceApi
from bidsync.services.polling_scheduler import PollingScheduler
from bidsync.services.push_listener import PushListener
from bidsync.services.reconcile_service import Fact, ReconcileService
from bidsync.services.subscription_service import SubscriptionService
from bidsync.services.verification_gate import VerificationGate, can_write
from bidsync.stores.entity_store import EntityStore
from infra.http_client import HttpClient
from infra.ws_client import WSClient
from utils.logger import logger as _default_logger

VERIFICATION_POLLER = "verification"


class SyncEngine:
    """
    Application-facing engine.

    Owns the entity store and wires the command services, the reconciler,
    the verification gate, the polling scheduler and the push listener
    around it. Callers mutate through ``engine.bids`` / ``engine.subscriptions``
    and observe through ``engine.store.subscribe``.
    """

    def __init__(self,
                 settings: Optional[EngineSettings] = None,
                 *,
                 api=None,
                 http_client: Optional[HttpClient] = None,
                 ws_client=None,
                 endpoints: Optional[Endpoints] = None,
                 store: Optional[EntityStore] = None,
                 logger=None,
                 ) -> None:
        self.settings = settings or EngineSettings()
        self.log = logger or _default_logger
        self.store = store or EntityStore()
        self.reconciler = ReconcileService(self.store, logger=self.log)
        self.gate = VerificationGate(self.store)
        self.actor: Optional[Actor] = None

        self._http = http_client
        if api is None:
            if self._http is None:
                self._http = HttpClient.from_settings(self.settings.api, logger=self.log)
            api = MarketplaceApi(self._http, endpoints, logger=self.log)
        self.api = api

        self.bids = BidService(self.api, self.store, self.reconciler, self.gate, logger=self.log)
        self.subscriptions = SubscriptionService(self.api, self.store, self.reconciler, self.gate, logger=self.log)
        self.scheduler = PollingScheduler(self.refresh, self.settings.polling.interval_s,
                                          name="refresh", logger=self.log)

        push_cfg = self.settings.push
        if ws_client is None and push_cfg.enabled and push_cfg.url:
            ws_client = WSClient(push_cfg.url, token=self.settings.api.token,
                                 ping_interval=push_cfg.ping_interval,
                                 reconnect_cap_s=push_cfg.reconnect_cap_s)
        self._ws = ws_client
        self.push = PushListener(ws_client, self.reconciler, lambda: self.gate.actor_id, logger=self.log)

        self._unsubscribe_verification: Optional[Callable[[], None]] = None

    @classmethod
    def from_cfg(cls, cfg: Mapping[str, Any], **kwargs) -> "SyncEngine":
        return cls(EngineSettings.from_cfg(cfg), endpoints=make_endpoints_from_cfg(cfg), **kwargs)

    # ---- lifecycle -------------------------------------------------------------
    async def __aenter__(self) -> "SyncEngine":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def start(self) -> None:
        """Load the actor, pull a full snapshot, then open poll and push channels."""
        await self.load_profile()
        await self.refresh()
        self._unsubscribe_verification = self.store.subscribe(
            EntityKind.VERIFICATION, self._on_verification_change
        )
        self._poll_until_verified()
        await self.scheduler.start()
        await self.push.start()
        self.log.info(f"SyncEngine started actor={self.actor.id} role={self.actor.role.value} "
                      f"can_write={self.gate.can_write()}")

    async def stop(self) -> None:
        if self._unsubscribe_verification is not None:
            self._unsubscribe_verification()
            self._unsubscribe_verification = None
        await self.scheduler.stop()
        await self.push.stop()
        if self._http is not None:
            await self._http.close()
        self.log.info("SyncEngine stopped")

    def set_token(self, token: Optional[str]) -> None:
        """Hand a refreshed bearer token to the transports; the push socket uses it on reconnect."""
        if self._http is not None:
            self._http.set_token(token)
        if self._ws is not None:
            self._ws.token = token or ""
        self.log.info("bearer token updated")

    # ---- polling ---------------------------------------------------------------
    def request_polling(self, name: str, while_: Optional[Callable[[], bool]] = None) -> Callable[[], None]:
        """Let a UI collaborator keep the refresh loop alive; call the result to release."""
        return self.scheduler.request(name, while_=while_)

    def _poll_until_verified(self) -> None:
        if self.gate.wants_polling() and VERIFICATION_POLLER not in self.scheduler.subscribers:
            self.scheduler.request(VERIFICATION_POLLER, while_=self.gate.wants_polling)

    def _on_verification_change(self, actor_id: str, status: Optional[VerificationStatus]) -> None:
        if actor_id != self.gate.actor_id:
            return
        if can_write(status):
            self.log.info(f"actor {actor_id} verified")
            return
        self._poll_until_verified()

    # ---- full refresh ----------------------------------------------------------
    async def load_profile(self) -> Actor:
        profile = await self.api.get_profile()
        self.actor = profile.actor
        self.gate.actor_id = profile.actor.id
        self.reconciler.apply(Fact.of(Source.POLL, EntityKind.VERIFICATION, profile.verification))
        return self.actor

    async def refresh(self) -> None:
        """Full-state poll: profile plus the collections relevant to the actor's role."""
        await self.load_profile()
        if self.actor.is_carrier:
            bids, shipments, subs = await asyncio.gather(
                self.api.list_my_bids(),
                self.api.list_available_shipments(),
                self.api.list_my_subscriptions(),
            )
        else:
            bids, shipments = await asyncio.gather(
                self.api.list_bids_on_my_shipments(),
                self.api.list_my_active_shipments(),
            )
            subs = []
        written = (
            self.reconciler.ingest(Source.POLL, EntityKind.SHIPMENT, shipments)
            + self.reconciler.ingest(Source.POLL, EntityKind.BID, bids)
            + self.reconciler.ingest(Source.POLL, EntityKind.SUBSCRIPTION, subs)
        )
        self.log.debug(f"refresh: bids={len(bids)} shipments={len(shipments)} "
                       f"subscriptions={len(subs)} written={written}")
