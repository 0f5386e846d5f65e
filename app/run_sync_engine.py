# app/run_sync_engine.py
import os
import asyncio
import signal
import contextlib

from utils import logger, load_cfg
from bidsync.app.sync_engine import SyncEngine
from bidsync.enums import EntityKind

_BRIGHT_BLUE = "\033[1;34m"
_BRIGHT_GREEN = "\033[1;32m"
_RESET = "\033[0m"


def show_change(kind: EntityKind):
    color = _BRIGHT_GREEN if kind is EntityKind.BID else _BRIGHT_BLUE

    def _cb(entity_id, entity):
        state = "removed" if entity is None else entity
        print(f"{color}[{kind.value}][{entity_id}] {state}{_RESET}")

    return _cb


async def main():
    cfg_path = os.getenv("MARKETPLACE_CONFIG", "configs/marketplace_config.yaml")
    cfg = load_cfg(cfg_path)

    engine = SyncEngine.from_cfg(cfg)
    for kind in EntityKind:
        engine.store.subscribe(kind, show_change(kind))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    async with engine:
        logger.info(f"Sync engine running against {engine.settings.api.base_url}")
        release = engine.request_polling("runner")
        await stop.wait()
        release()


if __name__ == "__main__":
    asyncio.run(main())
