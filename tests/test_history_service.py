from datetime import timedelta

from conftest import make_player
from models import Role, Winners
from schemas import GameResultSnapshot
from core.timeutils import utcnow
from services.history_service import (
    calculate_placement,
    get_game_result,
    get_player_game_history,
    get_player_game_stats,
)


def killer_win(room_id="ROOM01", ended_minutes_ago=0):
    """k 抓到 a、b；c 最後還活著但 killers 先達成條件"""
    ended = utcnow() - timedelta(minutes=ended_minutes_ago)
    return GameResultSnapshot(
        room_id=room_id,
        winners=Winners.KILLERS,
        elimination_order=["a", "b"],
        game_started_at=ended - timedelta(minutes=7, seconds=30),
        game_ended_at=ended,
        final_players={
            "k": make_player("k", Role.KILLER),
            "a": make_player("a", Role.SURVIVOR, is_alive=False),
            "b": make_player("b", Role.SURVIVOR, is_alive=False),
            "c": make_player("c", Role.SURVIVOR),
        },
    )


def test_placement():
    result = killer_win()

    assert calculate_placement(result, "k") == 1
    # 第一個被抓的排最後
    assert calculate_placement(result, "a") == 3
    assert calculate_placement(result, "b") == 2
    # 還活著的輸家排在同陣營被淘汰的人之後
    assert calculate_placement(result, "c") == 3
    assert calculate_placement(result, "ghost") == 4


def test_history_entries(store):
    store.append_history(killer_win("ROOM01", ended_minutes_ago=10))
    store.append_history(killer_win("ROOM02", ended_minutes_ago=0))

    history = get_player_game_history("a", store)

    assert [entry.room_id for entry in history] == ["ROOM02", "ROOM01"]
    assert history[0].player_role == Role.SURVIVOR
    assert not history[0].player_won
    assert history[0].placement == 3
    assert history[0].game_duration_minutes == 7.5


def test_history_skips_other_players_games(store):
    store.append_history(killer_win())
    assert get_player_game_history("stranger", store) == []


def test_stats(store):
    store.append_history(killer_win("ROOM01", ended_minutes_ago=10))
    store.append_history(killer_win("ROOM02", ended_minutes_ago=0))

    killer = get_player_game_stats("k", store)
    assert killer.games_played == 2
    assert killer.wins == 2
    assert killer.killer_wins == 2
    assert killer.avg_placement == 1.0
    assert killer.total_eliminations == 0

    survivor = get_player_game_stats("b", store)
    assert survivor.losses == 2
    assert survivor.survivor_wins == 0
    assert survivor.avg_placement == 2.0
    assert survivor.total_eliminations == 2


def test_stats_without_games(store):
    stats = get_player_game_stats("nobody", store)
    assert stats.games_played == 0
    assert stats.avg_placement == 0


def test_latest_game_result(store):
    store.append_history(killer_win("ROOM01", ended_minutes_ago=10))
    latest = store.append_history(killer_win("ROOM01", ended_minutes_ago=0))

    assert get_game_result("ROOM01", store).id == latest.id
    assert get_game_result("ROOM99", store) is None
