import asyncio
import time
from datetime import timedelta

from conftest import make_room
from core.cache import RoomCache
from core.feed import ChangeFeed
from core.scheduler import PhaseScheduler
from core.timeutils import utcnow


async def test_schedule_in_runs_callback():
    scheduler = PhaseScheduler()
    calls = []

    async def callback():
        calls.append("fired")

    scheduler.schedule_in("ROOM01", "test", 0.01, callback)
    await asyncio.sleep(0.1)

    assert calls == ["fired"]
    assert scheduler.pending() == []


async def test_past_deadline_runs_immediately():
    scheduler = PhaseScheduler()
    fired = asyncio.Event()

    async def callback():
        fired.set()

    scheduler.schedule_at("ROOM01", "late", utcnow() - timedelta(minutes=5), callback)
    await asyncio.wait_for(fired.wait(), timeout=1)


async def test_callback_errors_are_swallowed(caplog):
    scheduler = PhaseScheduler()

    async def broken():
        raise RuntimeError("boom")

    task = scheduler.schedule_in("ROOM01", "broken", 0, broken)
    await task

    assert "boom" in caplog.text


async def test_shutdown_cancels_pending():
    scheduler = PhaseScheduler()
    calls = []

    async def callback():
        calls.append("fired")

    scheduler.schedule_in("ROOM01", "later", 60, callback)
    scheduler.schedule_in("ROOM02", "later", 60, callback)
    assert scheduler.pending("ROOM01") == ["ROOM01:later"]

    await scheduler.shutdown()

    assert scheduler.pending() == []
    assert scheduler.schedule_in("ROOM01", "after-shutdown", 0, callback) is None
    assert calls == []


def test_feed_unsubscribe_is_idempotent():
    feed = ChangeFeed()
    received = []
    unsubscribe = feed.subscribe("ROOM01", received.append)

    feed.publish("ROOM01", None)
    unsubscribe()
    unsubscribe()
    feed.publish("ROOM01", None)

    assert received == [None]
    assert not feed.has_subscribers("ROOM01")


def test_feed_isolates_failing_subscribers():
    feed = ChangeFeed()
    received = []

    def broken(snapshot):
        raise ValueError("subscriber bug")

    feed.subscribe("ROOM01", broken)
    feed.subscribe("ROOM01", received.append)
    feed.publish("ROOM01", None)

    assert received == [None]


def test_cache_expires():
    cache = RoomCache(ttl_seconds=0.05)
    cache.put("ROOM01", make_room())

    assert cache.get("ROOM01") is not None
    time.sleep(0.1)
    assert cache.get("ROOM01") is None


def test_cache_is_bounded():
    cache = RoomCache(max_entries=2)
    for code in ("AAAAAA", "BBBBBB", "CCCCCC"):
        cache.put(code, make_room(code=code))

    assert len(cache) == 2
    assert cache.get("AAAAAA") is None
    assert cache.get("CCCCCC").code == "CCCCCC"
