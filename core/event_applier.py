"""
EventApplier：玩家事件（淘汰、完成 skillcheck、逃脫、位置更新）的寫入路徑

兩層寫入：
1. Tier-1：store.apply_atomic（鎖定後改寫），有逾時
2. Tier-2：逾時或資料庫錯誤時，改用 store.apply_fallback（讀取 -> 改寫 -> 寫回）

兩層套用的是同一條規則（core.rules），而規則本身是 idempotent 的，
所以 Tier-1 逾時後才完成、Tier-2 又再套用一次也不會重複生效。
但這時 Tier-2 看到的是已經套用過的狀態，會回報 no-op；
Tier-1 逾時過的事件因此一律排後續檢查（勝負、skillcheck 完成），不看 Tier-2 的結果。

驗證錯誤（PlayerNotFound、NotHost、RoomNotFound ...）不會觸發 fallback，直接往外丟。
"""
import asyncio
import logging
from typing import Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from database import Settings
from schemas import RoomSnapshot, Location
from core import rules
from core.round_manager import RoundManager
from core.rules import Rule
from core.store import RoomStore
from core.timeutils import utcnow

logger = logging.getLogger(__name__)


class EventApplier:

    def __init__(self, store: RoomStore, rounds: RoundManager, settings: Settings):
        self.store = store
        self.rounds = rounds
        self.settings = settings

    async def apply(self, room_code: str, rule: Rule, action: str, timeout: Optional[float] = None) -> Optional[RoomSnapshot]:
        """
        用兩層寫入套用一條規則

        參數：
            room_code: 房間代碼
            rule: core.rules 裡的規則（已綁好事件參數）
            action: 動作名稱（只用於 log）
            timeout: Tier-1 逾時秒數，預設 atomic_timeout_seconds

        返回：
            套用後的 RoomSnapshot；no-op 時為 None
        """
        updated, _ = await self._apply(room_code, rule, action, timeout)
        return updated

    async def _apply(
        self,
        room_code: str,
        rule: Rule,
        action: str,
        timeout: Optional[float] = None
    ) -> Tuple[Optional[RoomSnapshot], bool]:
        """
        返回：
            (套用後的 RoomSnapshot 或 None, Tier-1 是否逾時)

            Tier-1 逾時時它的 thread 還在跑，可能已經 commit；
            這種情況下 None 不代表事件沒有生效。
        """
        timeout = timeout or self.settings.atomic_timeout_seconds
        timed_out = False
        try:
            updated = await asyncio.wait_for(
                asyncio.to_thread(self.store.apply_atomic, room_code, rule),
                timeout=timeout
            )
            return updated, False
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning(f"{action} in room {room_code} timed out after {timeout}s, using fallback write")
        except SQLAlchemyError as e:
            logger.warning(f"{action} in room {room_code} failed atomically ({e}), using fallback write")

        updated = await asyncio.to_thread(self.store.apply_fallback, room_code, rule)
        return updated, timed_out

    async def eliminate_player(self, room_code: str, player_id: str, eliminated_by: Optional[str] = None) -> bool:
        now = utcnow()
        updated, timed_out = await self._apply(
            room_code,
            lambda room: rules.eliminate(room, player_id, eliminated_by, now),
            "Elimination",
            timeout=self.settings.elimination_timeout_seconds
        )
        if updated is None:
            logger.info(f"Elimination of {player_id} in room {room_code} was a no-op")
        else:
            logger.info(f"Player {player_id} eliminated in room {room_code}" + (f" by {eliminated_by}" if eliminated_by else ""))

        if updated is not None or timed_out:
            self.rounds.follow_up(room_code, "win-check", self.rounds.check_game_end)
        return updated is not None

    async def complete_skillcheck(self, room_code: str, skillcheck_id: str, player_id: str, debug_bypass: bool = False) -> bool:
        now = utcnow()
        updated, timed_out = await self._apply(
            room_code,
            lambda room: rules.complete_skillcheck(room, skillcheck_id, player_id, debug_bypass, now),
            "Skillcheck completion"
        )
        if updated is not None:
            logger.info(f"Skillcheck {skillcheck_id} completed by {player_id} in room {room_code}")

        if updated is not None or timed_out:
            self.rounds.follow_up(room_code, "skillcheck-check", self.rounds.check_skillcheck_completion)
        return updated is not None

    async def mark_player_escaped(self, room_code: str, player_id: str, debug_bypass: bool = False) -> bool:
        now = utcnow()
        updated, timed_out = await self._apply(
            room_code,
            lambda room: rules.mark_escaped(room, player_id, debug_bypass, now),
            "Escape"
        )
        if updated is not None:
            logger.info(f"Player {player_id} escaped from room {room_code}")

        if updated is not None or timed_out:
            self.rounds.follow_up(room_code, "win-check", self.rounds.check_game_end)
        return updated is not None

    async def update_player_location(self, room_code: str, player_id: str, location: Location) -> bool:
        now = utcnow()
        updated = await self.apply(
            room_code,
            lambda room: rules.update_location(room, player_id, location, now),
            "Location update"
        )
        return updated is not None
