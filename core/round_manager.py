"""
Round Manager：一局遊戲的階段轉換與勝負判斷

職責：
1. 開始遊戲（waiting -> headstart）並排程 headstart 結束
2. headstart -> active，排程回合期限
3. 勝負判斷（check_game_end）與結束遊戲（寫入歷史紀錄）
4. escape area 公開與逃脫計時
5. 結束後延遲重置房間（finished -> waiting）
6. 服務重啟後依資料庫內的時間戳重新排程

所有由計時器觸發的轉換都是條件式更新（WHERE status = 預期狀態），
多個觸發來源（計時器、客戶端、重啟後的補排程）同時到達也只會生效一次。
"""
import asyncio
import logging
from datetime import timedelta
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from database import Settings
from models import RoomStatus, Winners
from schemas import RoomSnapshot, GameResultSnapshot
from core import rules
from core.exceptions import RoomNotFound
from core.rules import IN_PROGRESS
from core.scheduler import PhaseScheduler
from core.store import RoomStore
from core.timeutils import utcnow, after_minutes, seconds_until
from core.win_policy import WinDecision, WinPolicy, policy_for

logger = logging.getLogger(__name__)

# 計時器多等一下，避免在期限的前一瞬間醒來而被判定為還沒到
TIMER_SLACK = timedelta(milliseconds=200)


class RoundManager:
    """Round 生命週期管理器"""

    def __init__(self, store: RoomStore, scheduler: PhaseScheduler, settings: Settings):
        self.store = store
        self.scheduler = scheduler
        self.settings = settings

    def policy(self, room: RoomSnapshot) -> WinPolicy:
        return policy_for(
            room.settings,
            threshold=self.settings.elimination_rate_threshold,
            grace_seconds=self.settings.win_check_grace_seconds
        )

    def follow_up(self, room_code: str, name: str, action: Callable[[str], Awaitable]) -> None:
        """事件寫入後稍等一下再做後續檢查，讓 ChangeFeed 先送出這次的變更"""
        self.scheduler.schedule_in(
            room_code, name, self.settings.follow_up_delay_seconds, lambda: action(room_code)
        )

    # ============ 開始 ============

    async def start_game(self, room_code: str) -> RoomSnapshot:
        """
        開始遊戲：分配角色並進入 headstart

        參數：
            room_code: 房間代碼

        返回：
            進入 headstart 後的 RoomSnapshot

        異常：
            RoomNotFound: 房間不存在
            GameAlreadyStarted: 房間不在 waiting
            InsufficientPlayers: 玩家數量不足
            MissingCenterLocation: Skillcheck 模式但沒有中心點
        """
        now = utcnow()
        room = await asyncio.to_thread(
            self.store.apply_atomic, room_code, lambda current: rules.assign_roles(current, now)
        )

        killers = [p.uid for p in room.killers()]
        logger.info(
            f"Room {room_code} started with {len(room.players)} players, "
            f"killers: {killers}, headstart {room.settings.headstart_minutes} min"
        )

        self._schedule_headstart_end(room)
        return room

    async def begin_active_phase(self, room_code: str) -> bool:
        """
        headstart -> active

        返回：
            True 如果這次呼叫完成了轉換；已經轉換過（或房間已不存在）時為 False
        """
        room = await asyncio.to_thread(
            self.store.apply_guarded,
            room_code,
            rules.begin_active,
            {"status": RoomStatus.HEADSTART}
        )
        if room is None:
            logger.info(f"Room {room_code} is no longer in headstart, skipping transition")
            return False

        skillcheck_count = len(room.skillchecks or [])
        logger.info(f"Room {room_code} is now active ({skillcheck_count} skillchecks)")

        self._schedule_round_deadline(room)
        # headstart 期間可能已經有人被淘汰
        self.follow_up(room_code, "win-check", self.check_game_end)
        return True

    # ============ 勝負判斷 ============

    async def check_game_end(self, room_code: str) -> WinDecision:
        """
        檢查這一局是否該結束（best effort：錯誤只記錄，不往外丟）

        返回：
            WinDecision；winners 不為 None 表示遊戲已結束
        """
        try:
            return await self._check_game_end(room_code)
        except Exception as e:
            logger.error(f"Win check failed for room {room_code}: {e}", exc_info=True)
            return WinDecision()

    async def _check_game_end(self, room_code: str) -> WinDecision:
        # 做決策一律讀資料庫，不讀快取
        room = await asyncio.to_thread(self.store.get, room_code)
        if room is None or room.status not in IN_PROGRESS:
            return WinDecision()

        now = utcnow()
        decision = self.policy(room).evaluate(room, now)

        if decision.reveal_escape_area:
            logger.info(f"Round timer expired in room {room_code}, revealing escape area")
            await self.reveal_escape_area_on_timer(room_code)
        elif decision.ended:
            await self.end_game(room, decision.winners, now)

        return decision

    async def end_game(self, room: RoomSnapshot, winners: Winners, now=None) -> bool:
        """
        結束遊戲：狀態改成 finished 並寫入 GameResult，然後排程重置

        歷史紀錄寫入失敗時，仍然把狀態改成 finished（不寫歷史）。

        返回：
            True 如果這次呼叫結束了遊戲；別人先結束了時為 False
        """
        now = now or utcnow()
        result = GameResultSnapshot(
            room_id=room.code,
            winners=winners,
            elimination_order=rules.elimination_order(room),
            game_started_at=room.game_started_at,
            game_ended_at=now,
            final_players=room.players,
        )

        try:
            finished = await asyncio.to_thread(self.store.finish_round, result, IN_PROGRESS)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record result for room {room.code}: {e}, finishing without history")
            finished = await asyncio.to_thread(
                self.store.update,
                room.code,
                {"status": RoomStatus.FINISHED, "game_ended_at": now},
                {"status": list(IN_PROGRESS)}
            )

        if not finished:
            logger.info(f"Room {room.code} already finished by another writer")
            return False

        logger.info(f"Room {room.code} finished, {winners.value} win")
        self.scheduler.schedule_in(
            room.code, "reset", self.settings.reset_delay_seconds,
            lambda: self.reset_room_for_new_game(room.code)
        )
        return True

    # ============ Escape area ============

    async def reveal_escape_area_on_timer(self, room_code: str) -> bool:
        room = await asyncio.to_thread(
            self.store.apply_guarded,
            room_code,
            lambda current: rules.reveal_escape_area(
                current, utcnow(), self.settings.default_escape_distance_meters
            ),
            {"status": RoomStatus.ACTIVE, "escape_area": None}
        )
        if room is None:
            return False

        self._schedule_escape_timer(room)
        return True

    async def check_skillcheck_completion(self, room_code: str) -> bool:
        """所有 skillcheck 完成時公開 escape area（best effort）"""
        try:
            room = await asyncio.to_thread(self.store.get, room_code)
            if room is None or room.status != RoomStatus.ACTIVE:
                return False
            if room.escape_area is not None or not rules.all_skillchecks_done(room):
                return False

            def reveal(current: RoomSnapshot) -> Optional[RoomSnapshot]:
                if not rules.all_skillchecks_done(current):
                    return None
                return rules.reveal_escape_area(
                    current, utcnow(), self.settings.default_escape_distance_meters, from_skillchecks=True
                )

            updated = await asyncio.to_thread(
                self.store.apply_guarded,
                room_code,
                reveal,
                {"status": RoomStatus.ACTIVE, "escape_area": None}
            )
            if updated is None:
                return False

            logger.info(f"All skillchecks completed in room {room_code}, escape area revealed")
            self._schedule_escape_timer(updated)
            return True
        except Exception as e:
            logger.error(f"Skillcheck completion check failed for room {room_code}: {e}", exc_info=True)
            return False

    async def expire_escape_timer(self, room_code: str) -> bool:
        """
        逃脫計時結束：淘汰還沒逃出去的 survivor，然後重新判斷勝負

        返回：
            True 如果有 survivor 因此被淘汰
        """
        room = await asyncio.to_thread(self.store.get, room_code)
        if room is None or room.status != RoomStatus.ACTIVE or room.escape_timer_started_at is None:
            return False

        deadline = after_minutes(room.escape_timer_started_at, self.settings.escape_timer_minutes)
        if seconds_until(deadline) > 0:
            logger.info(f"Escape timer in room {room_code} has {seconds_until(deadline):.0f}s left")
            return False

        now = utcnow()
        try:
            updated = await asyncio.to_thread(
                self.store.apply_atomic, room_code, lambda current: rules.expire_escape_timer(current, now)
            )
        except RoomNotFound:
            return False

        if updated is not None:
            eliminated = [p.uid for p in updated.players.values() if p.eliminated_by == rules.ESCAPE_TIMER_EXPIRED]
            logger.info(f"Escape timer expired in room {room_code}, eliminated {eliminated}")

        await self.check_game_end(room_code)
        return updated is not None

    # ============ 重置 ============

    async def reset_room_for_new_game(self, room_code: str) -> bool:
        try:
            room = await asyncio.to_thread(self.store.apply_atomic, room_code, rules.reset_round)
        except RoomNotFound:
            logger.info(f"Room {room_code} was deleted before reset")
            return False

        if room is None:
            return False
        logger.info(f"Room {room_code} reset for a new game")
        return True

    # ============ 重啟 ============

    async def resume_timers(self) -> int:
        """
        服務重啟後，依資料庫中的時間戳重新排程所有進行中 / 剛結束的房間

        返回：
            重新排程的房間數
        """
        rooms = await asyncio.to_thread(
            self.store.list_rooms, [RoomStatus.HEADSTART, RoomStatus.ACTIVE, RoomStatus.FINISHED]
        )

        for room in rooms:
            if room.status == RoomStatus.HEADSTART:
                self._schedule_headstart_end(room)
            elif room.status == RoomStatus.ACTIVE:
                self._schedule_round_deadline(room)
                if room.escape_timer_started_at is not None:
                    self._schedule_escape_timer(room)
                self.follow_up(room.code, "win-check", self.check_game_end)
            elif room.game_ended_at is not None:
                reset_at = room.game_ended_at + timedelta(seconds=self.settings.reset_delay_seconds)
                self.scheduler.schedule_at(
                    room.code, "reset", reset_at,
                    lambda code=room.code: self.reset_room_for_new_game(code)
                )
            else:
                self.scheduler.schedule_in(
                    room.code, "reset", self.settings.reset_delay_seconds,
                    lambda code=room.code: self.reset_room_for_new_game(code)
                )

        if rooms:
            logger.info(f"Resumed timers for {len(rooms)} room(s)")
        return len(rooms)

    # ============ 排程 ============

    def _schedule_headstart_end(self, room: RoomSnapshot) -> None:
        code = room.code
        self.scheduler.schedule_at(code, "headstart", room.headstart_deadline(), lambda: self.begin_active_phase(code))

    def _schedule_round_deadline(self, room: RoomSnapshot) -> None:
        deadline = room.round_deadline()
        if deadline is None:
            return
        code = room.code
        self.scheduler.schedule_at(code, "round-deadline", deadline + TIMER_SLACK, lambda: self.check_game_end(code))

    def _schedule_escape_timer(self, room: RoomSnapshot) -> None:
        code = room.code
        deadline = after_minutes(room.escape_timer_started_at, self.settings.escape_timer_minutes)
        self.scheduler.schedule_at(code, "escape-timer", deadline + TIMER_SLACK, lambda: self.expire_escape_timer(code))
