import time

import pytest
from sqlalchemy.exc import OperationalError

from conftest import CENTER, make_room, eventually
from models import RoomStatus, Winners
from schemas import Location, RoomSettings, Skillcheck, SkillcheckSettings
from core.exceptions import PlayerNotFound, RoomNotFound
from core.timeutils import utcnow


@pytest.fixture
def active_room(context):
    context.store.insert(make_room(
        status=RoomStatus.ACTIVE,
        killers=["k"],
        survivors=["a", "b"],
        game_started_at=utcnow()
    ))
    return context.store.get("ROOM01")


async def test_eliminate_applies_once(context, active_room):
    assert await context.events.eliminate_player("ROOM01", "a", "k")
    assert not await context.events.eliminate_player("ROOM01", "a", "k")

    player = context.store.get("ROOM01").players["a"]
    assert not player.is_alive
    assert player.eliminated_by == "k"


async def test_eliminate_unknown_player(context, active_room):
    with pytest.raises(PlayerNotFound):
        await context.events.eliminate_player("ROOM01", "ghost")


async def test_eliminate_in_missing_room(context):
    with pytest.raises(RoomNotFound):
        await context.events.eliminate_player("NOPE00", "a")


async def test_database_error_falls_back(context, active_room, monkeypatch):
    def broken(room_code, rule):
        raise OperationalError("SELECT ... FOR UPDATE", {}, Exception("database is locked"))

    monkeypatch.setattr(context.store, "apply_atomic", broken)

    assert await context.events.eliminate_player("ROOM01", "a", "k")
    assert not context.store.get("ROOM01").players["a"].is_alive


async def test_timeout_falls_back(context, active_room, monkeypatch):
    def slow(room_code, rule):
        time.sleep(0.5)
        return None

    monkeypatch.setattr(context.store, "apply_atomic", slow)
    context.settings.atomic_timeout_seconds = 0.05

    location = Location(latitude=25.03, longitude=121.56)
    assert await context.events.update_player_location("ROOM01", "a", location)
    assert context.store.get("ROOM01").players["a"].location == location


async def test_escape_without_escape_area_is_noop(context, active_room):
    assert not await context.events.mark_player_escaped("ROOM01", "a")


async def test_location_recorded_while_waiting(context):
    context.store.insert(make_room(survivors=["a"]))
    location = Location(latitude=1, longitude=1)

    assert await context.events.update_player_location("ROOM01", "a", location)
    assert not await context.events.update_player_location("ROOM01", "ghost", location)


async def test_host_location_becomes_skillcheck_center(context):
    settings = RoomSettings(skillchecks=SkillcheckSettings(enabled=True))
    context.store.insert(make_room(survivors=["a"], settings=settings))

    assert await context.events.update_player_location("ROOM01", "host", CENTER)

    room = await context.rounds.start_game("ROOM01")
    assert room.skillcheck_center_location == CENTER


def commit_then_stall(store, monkeypatch, stall=0.3):
    """Tier-1 writes for real but returns only after the caller gave up on it."""
    apply_atomic = store.apply_atomic

    def late(room_code, rule):
        updated = apply_atomic(room_code, rule)
        time.sleep(stall)
        return updated

    monkeypatch.setattr(store, "apply_atomic", late)


async def test_late_elimination_still_ends_the_round(context, monkeypatch):
    context.store.insert(make_room(
        status=RoomStatus.ACTIVE,
        killers=["k"],
        survivors=["a"],
        game_started_at=utcnow()
    ))
    commit_then_stall(context.store, monkeypatch)
    context.settings.elimination_timeout_seconds = 0.05

    # Tier-2 sees the player already dead, so the call itself reports a no-op
    assert not await context.events.eliminate_player("ROOM01", "a", "k")

    result = await eventually(lambda: context.store.latest_result("ROOM01"))
    assert result.winners == Winners.KILLERS


async def test_late_skillcheck_completion_still_reveals_escape_area(context, monkeypatch):
    context.store.insert(make_room(
        status=RoomStatus.ACTIVE,
        killers=["k"],
        survivors=["a"],
        game_started_at=utcnow(),
        settings=RoomSettings(skillchecks=SkillcheckSettings(enabled=True, count=1)),
        skillcheck_center_location=CENTER,
        skillchecks=[Skillcheck(id="sc-1", location=CENTER)]
    ))
    commit_then_stall(context.store, monkeypatch)
    context.settings.atomic_timeout_seconds = 0.05

    assert not await context.events.complete_skillcheck("ROOM01", "sc-1", "a")

    def revealed():
        room = context.store.get("ROOM01")
        return room if room.escape_area is not None else None

    room = await eventually(revealed)
    assert room.all_skillchecks_completed
    assert room.skillchecks[0].completed_by == ["a"]
