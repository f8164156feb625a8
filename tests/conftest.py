import asyncio

import pytest
from fastapi.testclient import TestClient

import models  # noqa: F401  registers the tables on Base.metadata
from database import Base, Settings, make_engine, make_session_factory
from models import RoomStatus, Role
from schemas import RoomSnapshot, RoomSettings, PlayerState, Location
from core.context import build_context
from core.timeutils import utcnow


CENTER = Location(latitude=25.0330, longitude=121.5654)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        follow_up_delay_seconds=0,
        reset_delay_seconds=0.2,
        feed_poll_interval_seconds=0.2,
        win_check_grace_seconds=0,
    )


@pytest.fixture
def session_factory(settings):
    engine = make_engine(settings.database_url)
    Base.metadata.create_all(bind=engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
async def context(session_factory, settings):
    ctx = build_context(session_factory, settings)
    yield ctx
    await ctx.scheduler.shutdown()


@pytest.fixture
def store(session_factory):
    from core.store import RoomStore
    from core.cache import RoomCache
    from core.feed import ChangeFeed
    return RoomStore(session_factory, feed=ChangeFeed(), cache=RoomCache(ttl_seconds=60))


@pytest.fixture
def client(session_factory, settings):
    from main import create_app

    app = create_app()
    app.state.context = build_context(session_factory, settings)
    with TestClient(app) as test_client:
        yield test_client


def make_player(uid, role=None, **fields):
    return PlayerState(uid=uid, display_name=uid.title(), role=role, **fields)


def make_room(
    code="ROOM01",
    host_id="host",
    status=RoomStatus.WAITING,
    killers=(),
    survivors=(),
    settings=None,
    **fields
):
    """
    Room with the host plus the given players.

    The host is a killer when listed in ``killers``, a survivor when
    listed in ``survivors``, and has no role otherwise.
    """
    players = {host_id: make_player(host_id)}
    for uid in killers:
        players[uid] = make_player(uid, Role.KILLER)
    for uid in survivors:
        players[uid] = make_player(uid, Role.SURVIVOR)
    return RoomSnapshot(
        code=code,
        host_id=host_id,
        status=status,
        players=players,
        settings=settings or RoomSettings(),
        created_at=utcnow(),
        **fields
    )


async def eventually(predicate, timeout=3.0, interval=0.05):
    """Poll ``predicate`` until it returns a truthy value."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        result = predicate()
        if result:
            return result
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)
