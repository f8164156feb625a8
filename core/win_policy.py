"""
勝負判斷策略

房間設定決定使用哪一種策略（policy_for），之後勝負判斷只呼叫 evaluate()：

- ClassicPolicy：沒有 survivor 存活 -> killers 勝；回合時間到 -> survivors 勝
- EliminationRatePolicy（skillcheck / escape 模式）：
  只有「存活且未逃脫的 survivor」歸零時才結束，
  被淘汰比例 >= threshold（預設 75%）-> killers 勝，否則 survivors 勝；
  回合時間到不會結束遊戲，只會公開 escape area
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from models import RoomStatus, Winners
from schemas import RoomSnapshot, RoomSettings


@dataclass(frozen=True)
class WinDecision:
    winners: Optional[Winners] = None
    reveal_escape_area: bool = False

    @property
    def ended(self) -> bool:
        return self.winners is not None


class WinPolicy(ABC):

    def __init__(self, grace_seconds: float = 5):
        # 剛轉成 active 的前幾秒不判斷計時結束，避免誤判
        self.grace_seconds = grace_seconds

    def evaluate(self, room: RoomSnapshot, now: datetime) -> WinDecision:
        if not room.still_playing_survivors():
            return WinDecision(winners=self.winners_when_no_survivors_remain(room))

        if room.status == RoomStatus.ACTIVE and self.round_timer_expired(room, now):
            return self.on_round_timer_expired(room)

        return WinDecision()

    def round_timer_expired(self, room: RoomSnapshot, now: datetime) -> bool:
        deadline = room.round_deadline()
        if deadline is None:
            return False
        elapsed = (now - room.game_started_at).total_seconds()
        return elapsed >= self.grace_seconds and now >= deadline

    @abstractmethod
    def winners_when_no_survivors_remain(self, room: RoomSnapshot) -> Winners:
        ...

    @abstractmethod
    def on_round_timer_expired(self, room: RoomSnapshot) -> WinDecision:
        ...


class ClassicPolicy(WinPolicy):

    def winners_when_no_survivors_remain(self, room: RoomSnapshot) -> Winners:
        return Winners.KILLERS

    def on_round_timer_expired(self, room: RoomSnapshot) -> WinDecision:
        return WinDecision(winners=Winners.SURVIVORS)


class EliminationRatePolicy(WinPolicy):

    def __init__(self, threshold: float = 0.75, grace_seconds: float = 5):
        super().__init__(grace_seconds)
        self.threshold = threshold

    @staticmethod
    def elimination_rate(room: RoomSnapshot) -> float:
        survivors = room.survivors()
        if not survivors:
            # 所有 survivor 都離開房間了，視為全數淘汰
            return 1.0
        return len(room.eliminated_survivors()) / len(survivors)

    def winners_when_no_survivors_remain(self, room: RoomSnapshot) -> Winners:
        if self.elimination_rate(room) >= self.threshold:
            return Winners.KILLERS
        return Winners.SURVIVORS

    def on_round_timer_expired(self, room: RoomSnapshot) -> WinDecision:
        return WinDecision(reveal_escape_area=room.escape_area is None)


def policy_for(settings: RoomSettings, threshold: float = 0.75, grace_seconds: float = 5) -> WinPolicy:
    if settings.skillcheck_mode:
        return EliminationRatePolicy(threshold=threshold, grace_seconds=grace_seconds)
    return ClassicPolicy(grace_seconds=grace_seconds)
