import pytest
from sqlalchemy.exc import IntegrityError

from conftest import make_room
from models import RoomStatus, Winners
from schemas import GameResultSnapshot
from core import rules
from core.exceptions import RoomNotFound, PlayerNotFound
from core.timeutils import utcnow


def test_insert_and_get(store):
    store.insert(make_room(survivors=["a"]))
    room = store.get("ROOM01")

    assert room.status == RoomStatus.WAITING
    assert set(room.players) == {"host", "a"}
    assert room.created_at.tzinfo is not None


def test_duplicate_code_raises_integrity_error(store):
    store.insert(make_room())
    with pytest.raises(IntegrityError):
        store.insert(make_room())


def test_get_missing_room(store):
    assert store.get("NOPE00") is None
    assert not store.exists("NOPE00")


def test_conditional_update_applies_once(store):
    store.insert(make_room(status=RoomStatus.HEADSTART))

    first = store.update("ROOM01", {"status": RoomStatus.ACTIVE}, where={"status": RoomStatus.HEADSTART})
    second = store.update("ROOM01", {"status": RoomStatus.ACTIVE}, where={"status": RoomStatus.HEADSTART})

    assert first is True
    assert second is False
    assert store.get("ROOM01").status == RoomStatus.ACTIVE


def test_conditional_update_on_null_and_in(store):
    store.insert(make_room(status=RoomStatus.ACTIVE))

    assert store.update("ROOM01", {"all_skillchecks_completed": True}, where={"escape_area": None})
    assert store.update(
        "ROOM01",
        {"status": RoomStatus.FINISHED},
        where={"status": [RoomStatus.HEADSTART, RoomStatus.ACTIVE]}
    )
    assert not store.update(
        "ROOM01",
        {"status": RoomStatus.FINISHED},
        where={"status": [RoomStatus.HEADSTART, RoomStatus.ACTIVE]}
    )


def test_writes_invalidate_cache(store):
    store.insert(make_room())
    assert store.get("ROOM01", use_cache=True).status == RoomStatus.WAITING

    store.update("ROOM01", {"status": RoomStatus.HEADSTART})

    assert store.get("ROOM01", use_cache=True).status == RoomStatus.HEADSTART


def test_cached_snapshot_is_a_copy(store):
    store.insert(make_room())
    cached = store.get("ROOM01", use_cache=True)
    cached.players.clear()

    assert "host" in store.get("ROOM01", use_cache=True).players


def test_apply_atomic(store):
    store.insert(make_room(status=RoomStatus.ACTIVE, survivors=["a"]))

    updated = store.apply_atomic("ROOM01", lambda room: rules.eliminate(room, "a", "host", utcnow()))
    assert not updated.players["a"].is_alive
    assert not store.get("ROOM01").players["a"].is_alive

    # 再套用一次是 no-op
    assert store.apply_atomic("ROOM01", lambda room: rules.eliminate(room, "a", "host", utcnow())) is None


def test_apply_atomic_propagates_rule_errors(store):
    store.insert(make_room(status=RoomStatus.ACTIVE))
    with pytest.raises(PlayerNotFound):
        store.apply_atomic("ROOM01", lambda room: rules.eliminate(room, "ghost", None, utcnow()))


def test_apply_on_missing_room(store):
    with pytest.raises(RoomNotFound):
        store.apply_atomic("NOPE00", rules.reset_round)
    with pytest.raises(RoomNotFound):
        store.apply_fallback("NOPE00", rules.reset_round)
    assert store.apply_guarded("NOPE00", rules.reset_round, {"status": RoomStatus.FINISHED}) is None


def test_apply_fallback(store):
    store.insert(make_room(status=RoomStatus.ACTIVE, survivors=["a"]))
    updated = store.apply_fallback("ROOM01", lambda room: rules.eliminate(room, "a", None, utcnow()))

    assert not updated.players["a"].is_alive
    assert not store.get("ROOM01").players["a"].is_alive


def test_apply_guarded_skips_when_condition_fails(store):
    store.insert(make_room(status=RoomStatus.HEADSTART, headstart_started_at=utcnow()))

    # 規則看到的是 headstart，但寫回條件要求 active，所以不寫入
    updated = store.apply_guarded("ROOM01", rules.begin_active, {"status": RoomStatus.ACTIVE})

    assert updated is None
    assert store.get("ROOM01").status == RoomStatus.HEADSTART


def test_finish_round_only_once(store):
    now = utcnow()
    store.insert(make_room(status=RoomStatus.ACTIVE, killers=["k"], survivors=["a"], game_started_at=now))
    result = GameResultSnapshot(
        room_id="ROOM01",
        winners=Winners.KILLERS,
        elimination_order=["a"],
        game_started_at=now,
        game_ended_at=now,
        final_players=store.get("ROOM01").players,
    )
    in_progress = (RoomStatus.HEADSTART, RoomStatus.ACTIVE)

    assert store.finish_round(result, in_progress)
    assert not store.finish_round(result, in_progress)

    room = store.get("ROOM01")
    assert room.status == RoomStatus.FINISHED
    assert room.game_ended_at is not None
    assert len(store.list_results()) == 1

    latest = store.latest_result("ROOM01")
    assert latest.winners == Winners.KILLERS
    assert latest.final_players["k"].uid == "k"


def test_feed_receives_committed_snapshots(store):
    received = []
    unsubscribe = store.feed.subscribe("ROOM01", received.append)

    store.insert(make_room())
    store.update("ROOM01", {"status": RoomStatus.HEADSTART})
    store.delete("ROOM01")
    unsubscribe()
    store.insert(make_room())

    assert [snapshot.status if snapshot else None for snapshot in received] == [
        RoomStatus.WAITING, RoomStatus.HEADSTART, None
    ]


def test_list_rooms_by_status(store):
    store.insert(make_room(code="AAAAAA"))
    store.insert(make_room(code="BBBBBB", status=RoomStatus.ACTIVE))

    assert [room.code for room in store.list_rooms([RoomStatus.ACTIVE])] == ["BBBBBB"]
