# infra/ws_client.py
import asyncio
import contextlib
import json
import random
from typing import Any, Optional, Dict

import websockets
from websockets.exceptions import InvalidStatus, ConnectionClosedError, ConnectionClosedOK

from utils.logger import logger

Json = Dict[str, Any]

class WSClient:
    """
    Long-lived websocket connection that reconnects with capped exponential
    backoff and forwards every decoded JSON frame to a bound asyncio.Queue.
    """
    def __init__(self,
        url: str,
        token: str = "",
        ping_interval: int = 20,
        reconnect_cap_s: int = 20,
        name: str = "push",
    ):
        self.url = url
        self.token = token
        self.ping_interval = ping_interval
        self.reconnect_cap_s = reconnect_cap_s
        self.name = name
        self._ws = None
        self._stop = False

        self._q: Optional[asyncio.Queue] = None
        self._put_timeout_ms = 50
        self._drop_when_full = True

        logger.info(f"WSClient {name} init url={url} ping_interval={ping_interval}s "
                    f"reconnect_cap_s={reconnect_cap_s}")

    def bind_queue(self, q: asyncio.Queue, *,
                   put_timeout_ms: int = 50,
                   drop_when_full: bool = True):
        self._q = q
        self._put_timeout_ms = put_timeout_ms
        self._drop_when_full = drop_when_full

    def _connect_headers(self) -> Dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _heartbeat(self):
        while not self._stop and self._ws:
            try:
                await self._ws.send("ping")
            except Exception:
                return
            await asyncio.sleep(self.ping_interval)

    def _backoff(self, retry: int) -> float:
        return min(self.reconnect_cap_s, 2 ** min(retry, 6)) * random.uniform(0.8, 1.3)

    async def run_forever(self):
        retry = 0
        while not self._stop:
            hb = None
            try:
                logger.info(f"WS {self.name} connect: connecting to {self.url} (retry={retry})")
                async with websockets.connect(self.url, additional_headers=self._connect_headers(),
                                              ping_interval=None, close_timeout=30) as ws:
                    self._ws = ws
                    retry = 0
                    logger.info(f"WS {self.name} connect: connected")
                    hb = asyncio.create_task(self._heartbeat())

                    async for msg in ws:
                        if isinstance(msg, str) and msg.strip().lower() in ("ping", "pong"):
                            if msg.strip().lower() == "ping":
                                with contextlib.suppress(Exception):
                                    await ws.send("pong")
                            continue
                        try:
                            data = json.loads(msg)
                        except (TypeError, ValueError):
                            logger.debug(f"WS {self.name} dropped non-json frame: {str(msg)[:128]}")
                            continue
                        await self._q_put(data)
            except asyncio.CancelledError:
                raise
            except InvalidStatus as e:
                code = getattr(getattr(e, "response", None), "status_code", None)
                logger.warning(f"WS {self.name} handshake rejected: HTTP {code}")
                await asyncio.sleep(self._backoff(retry))
                retry += 1
            except (ConnectionClosedError, ConnectionClosedOK, ConnectionResetError, TimeoutError, OSError) as e:
                logger.warning(f"WS {self.name} connection closed: {type(e).__name__} ({e})")
                await asyncio.sleep(self._backoff(retry))
                retry += 1
            except Exception:
                logger.exception(f"WS {self.name} loop: exception")
                await asyncio.sleep(self._backoff(retry))
                retry += 1
            finally:
                if hb:
                    hb.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await hb
                if self._ws is not None:
                    with contextlib.suppress(Exception):
                        await self._ws.close()
                    self._ws = None
                    logger.info(f"WS {self.name} close: websocket closed")

    async def _q_put(self, item):
        if not self._q:
            return
        try:
            if self._put_timeout_ms <= 0:
                self._q.put_nowait(item)
            else:
                await asyncio.wait_for(self._q.put(item), timeout=self._put_timeout_ms / 1000)
        except (asyncio.TimeoutError, asyncio.QueueFull) as e:
            if self._drop_when_full:
                logger.warning(f"WS {self.name} queue full/timeout ({type(e).__name__}), drop 1 msg")
            else:
                await self._q.put(item)

    async def stop(self):
        self._stop = True
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
            logger.info(f"WS {self.name} stop: websocket closed")
