# bidsync/services/polling_scheduler.py
import asyncio
import contextlib
from typing import Any, Awaitable, Callable, Dict, Optional

from utils.logger import logger as _default_logger

IDLE = "idle"
POLLING = "polling"

Condition = Callable[[], bool]


class PollingScheduler:
    """
    Fixed-interval full-refresh poller.

    Runs only while somebody asked for it: ``request(name, while_=...)``
    registers a subscriber, optionally with a condition re-evaluated before
    every tick; subscribers whose condition turned false are dropped. When
    none remain the timer task ends, so no timer outlives its last user.
    A tick never overlaps a poll still in flight.
    """

    def __init__(self, poll: Callable[[], Awaitable[Any]], interval_s: float = 30.0,
                 *, name: str = "poll", logger=None) -> None:
        self._poll = poll
        self.interval_s = float(interval_s)
        self.name = name
        self._log = logger or _default_logger
        self._subs: Dict[str, Optional[Condition]] = {}
        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self.state = IDLE
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def subscribers(self) -> list:
        return list(self._subs)

    def request(self, name: str, while_: Optional[Condition] = None) -> Callable[[], None]:
        """Ask for polling; returns a release function."""
        self._subs[name] = while_
        self._log.debug(f"{self.name}: polling requested by {name}")
        self._ensure_running()

        def _release() -> None:
            self.release(name)

        return _release

    def release(self, name: str) -> None:
        if name in self._subs:
            del self._subs[name]
            self._log.debug(f"{self.name}: {name} released")
        if not self._subs:
            self._cancel_timer()

    def evaluate(self) -> bool:
        """Drop subscribers whose condition no longer holds; True if any remain."""
        for name, cond in list(self._subs.items()):
            if cond is None:
                continue
            try:
                keep = bool(cond())
            except Exception:
                self._log.exception(f"{self.name}: condition of {name} failed, dropping it")
                keep = False
            if not keep:
                self._log.info(f"{self.name}: {name} no longer needs polling")
                self._subs.pop(name, None)
        return bool(self._subs)

    async def tick(self) -> bool:
        """Run one poll unless one is already in flight or nobody wants it."""
        if self.state == POLLING:
            self._log.debug(f"{self.name}: tick skipped, poll in flight")
            return False
        if not self.evaluate():
            return False
        self.state = POLLING
        self.ticks += 1
        try:
            await self._poll()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.warning(f"{self.name}: poll failed: {e!r}")
        finally:
            self.state = IDLE
        return True

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.interval_s)
                if not self.evaluate():
                    self._log.info(f"{self.name}: no subscribers left, stopping")
                    return
                if self.state == POLLING:
                    self._log.debug(f"{self.name}: tick skipped, poll in flight")
                    continue
                self._inflight = asyncio.create_task(self.tick())
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def _ensure_running(self) -> None:
        if self.running or not self._subs:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # no loop yet; start() picks it up
            return
        self._task = asyncio.create_task(self._run())
        self._log.info(f"{self.name}: started, interval={self.interval_s}s")

    def _cancel_timer(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            self._log.info(f"{self.name}: stopped, no subscribers")
        self._task = None

    async def start(self) -> None:
        self._ensure_running()

    async def stop(self) -> None:
        self._subs.clear()
        for t in (self._task, self._inflight):
            if t is not None and not t.done():
                t.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await t
        self._task = None
        self._inflight = None
        self.state = IDLE
