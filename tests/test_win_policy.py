from datetime import timedelta

import pytest

from conftest import make_room
from models import RoomStatus, Winners
from schemas import RoomSettings, SkillcheckSettings
from core.timeutils import utcnow
from core.win_policy import ClassicPolicy, EliminationRatePolicy, policy_for


SKILLCHECKS = RoomSettings(round_length_minutes=10, skillchecks=SkillcheckSettings(enabled=True))


def finish(room, eliminated=(), escaped=()):
    for uid in eliminated:
        room.players[uid].is_alive = False
        room.players[uid].eliminated_at = utcnow()
    for uid in escaped:
        room.players[uid].has_escaped = True
    return room


def active_room(survivors, settings=None, started_minutes_ago=1):
    return make_room(
        status=RoomStatus.ACTIVE,
        killers=["k"],
        survivors=survivors,
        settings=settings or RoomSettings(round_length_minutes=10),
        game_started_at=utcnow() - timedelta(minutes=started_minutes_ago)
    )


def test_policy_for_settings():
    assert isinstance(policy_for(RoomSettings()), ClassicPolicy)
    assert isinstance(policy_for(SKILLCHECKS), EliminationRatePolicy)


class TestClassic:

    def test_game_continues(self):
        room = active_room(["a", "b"])
        assert not ClassicPolicy().evaluate(room, utcnow()).ended

    def test_killers_win_when_all_survivors_caught(self):
        room = finish(active_room(["a", "b"]), eliminated=["a", "b"])
        decision = ClassicPolicy().evaluate(room, utcnow())
        assert decision.winners == Winners.KILLERS

    def test_survivors_win_on_timeout(self):
        room = active_room(["a", "b"], started_minutes_ago=11)
        decision = ClassicPolicy().evaluate(room, utcnow())
        assert decision.winners == Winners.SURVIVORS

    def test_grace_period_after_activation(self):
        # 期限已過，但 active 才剛開始
        room = active_room(["a"], settings=RoomSettings(round_length_minutes=0.01), started_minutes_ago=0)
        now = room.game_started_at + timedelta(seconds=2)
        assert not ClassicPolicy(grace_seconds=5).evaluate(room, now).ended

    def test_no_timer_check_during_headstart(self):
        room = active_room(["a"], started_minutes_ago=11)
        room.status = RoomStatus.HEADSTART
        assert not ClassicPolicy().evaluate(room, utcnow()).ended

    def test_eliminations_during_headstart_end_the_game(self):
        room = finish(active_room(["a"]), eliminated=["a"])
        room.status = RoomStatus.HEADSTART
        assert ClassicPolicy().evaluate(room, utcnow()).winners == Winners.KILLERS


class TestEliminationRate:

    def test_three_caught_one_escaped_is_killer_win(self):
        room = finish(active_room(["a", "b", "c", "d"], SKILLCHECKS), eliminated=["a", "b", "c"], escaped=["d"])
        decision = EliminationRatePolicy().evaluate(room, utcnow())
        assert decision.winners == Winners.KILLERS

    def test_half_caught_is_survivor_win(self):
        room = finish(active_room(["a", "b", "c", "d"], SKILLCHECKS), eliminated=["a", "b"], escaped=["c", "d"])
        decision = EliminationRatePolicy().evaluate(room, utcnow())
        assert decision.winners == Winners.SURVIVORS

    def test_game_continues_while_anyone_is_still_playing(self):
        room = finish(active_room(["a", "b", "c", "d"], SKILLCHECKS), eliminated=["a", "b", "c"])
        assert not EliminationRatePolicy().evaluate(room, utcnow()).ended

    def test_timeout_reveals_escape_area(self):
        room = active_room(["a"], SKILLCHECKS, started_minutes_ago=11)
        decision = EliminationRatePolicy().evaluate(room, utcnow())

        assert not decision.ended
        assert decision.reveal_escape_area

    def test_no_survivors_counts_as_all_eliminated(self):
        room = make_room(status=RoomStatus.ACTIVE, killers=["k"], settings=SKILLCHECKS, game_started_at=utcnow())
        assert EliminationRatePolicy.elimination_rate(room) == 1.0
        assert EliminationRatePolicy().evaluate(room, utcnow()).winners == Winners.KILLERS

    @pytest.mark.parametrize("threshold, winners", [(0.5, Winners.KILLERS), (0.9, Winners.SURVIVORS)])
    def test_threshold_is_configurable(self, threshold, winners):
        room = finish(active_room(["a", "b", "c", "d"], SKILLCHECKS), eliminated=["a", "b", "c"], escaped=["d"])
        assert EliminationRatePolicy(threshold=threshold).evaluate(room, utcnow()).winners == winners
