# tests/test_polling_scheduler.py
import asyncio

import pytest

from bidsync.enums import EntityKind, VerificationValue
from bidsync.services.polling_scheduler import PollingScheduler, IDLE, POLLING
from bidsync.services.push_listener import PushListener

T0 = 1_700_000_000_000


async def _wait_until(cond, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not cond():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.mark.asyncio
async def test_tick_never_overlaps():
    release = asyncio.Event()
    polls = []

    async def poll():
        polls.append(1)
        await release.wait()

    sched = PollingScheduler(poll, interval_s=3600)
    sched.request("ui")
    first = asyncio.create_task(sched.tick())
    await asyncio.sleep(0)
    assert sched.state == POLLING

    assert await sched.tick() is False
    release.set()
    assert await first is True
    assert polls == [1]
    assert sched.state == IDLE
    await sched.stop()

@pytest.mark.asyncio
async def test_poll_failure_is_contained():
    async def poll():
        raise RuntimeError("backend down")

    sched = PollingScheduler(poll, interval_s=3600)
    sched.request("ui")
    assert await sched.tick() is True
    assert sched.state == IDLE
    await sched.stop()

@pytest.mark.asyncio
async def test_release_stops_timer():
    async def poll():
        pass

    sched = PollingScheduler(poll, interval_s=3600)
    release_a = sched.request("a")
    release_b = sched.request("b")
    assert sched.running

    release_a()
    assert sched.running
    release_b()
    assert not sched.running
    assert sched.subscribers == []

@pytest.mark.asyncio
async def test_tick_without_subscribers_does_nothing():
    polls = []

    async def poll():
        polls.append(1)

    sched = PollingScheduler(poll, interval_s=3600)
    assert await sched.tick() is False
    assert polls == []

@pytest.mark.asyncio
async def test_verified_push_stops_polling(store, reconciler, gate, verify):
    verify(VerificationValue.PENDING, ts=T0)
    polls = []

    async def poll():
        polls.append(1)

    sched = PollingScheduler(poll, interval_s=0.01)
    sched.request("verification", while_=gate.wants_polling)
    await _wait_until(lambda: len(polls) >= 2)

    listener = PushListener(None, reconciler, lambda: gate.actor_id)
    listener.handle({"event": "verification-updated",
                     "data": {"userId": "carrier-1", "verificationStatus": "verified"}},
                    arrived_ms=T0 + 1)
    assert store.get(EntityKind.VERIFICATION, "carrier-1").value is VerificationValue.VERIFIED

    await _wait_until(lambda: not sched.running)
    count = len(polls)
    await asyncio.sleep(0.05)
    assert len(polls) == count
    assert sched.subscribers == []
    await sched.stop()

@pytest.mark.asyncio
async def test_unconditional_subscriber_keeps_polling():
    polls = []

    async def poll():
        polls.append(1)

    sched = PollingScheduler(poll, interval_s=0.01)
    sched.request("screen")
    sched.request("once", while_=lambda: False)
    await _wait_until(lambda: len(polls) >= 2)
    assert sched.subscribers == ["screen"]
    await sched.stop()
    assert not sched.running
