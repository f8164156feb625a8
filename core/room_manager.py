"""
Room Manager：管理 Room 的成員與設定

職責：
1. 建立 Room（含 Host player）
2. 加入 / 離開 / 踢出玩家
3. 修改房間設定
4. 查詢 Room 資訊

一局遊戲內的階段轉換由 RoundManager 負責。
所有方法都是同步的（由 FastAPI 的 threadpool 呼叫）。
"""
import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError

from database import Settings
from models import RoomStatus
from schemas import RoomSnapshot, RoomSettings, PlayerState, PlayerProfile, Location
from core import rules
from core.exceptions import RoomNotFound, CodeGenerationExhausted
from core.store import RoomStore
from core.timeutils import utcnow
from services.naming_service import generate_room_code

logger = logging.getLogger(__name__)

# 玩家「目前所在」的房間：還沒結束的
OPEN_STATUSES = (RoomStatus.WAITING, RoomStatus.HEADSTART, RoomStatus.ACTIVE)


class RoomManager:
    """Room 成員與設定管理器"""

    def __init__(self, store: RoomStore, settings: Settings):
        self.store = store
        self.settings = settings

    def create_room(
        self,
        host_id: str,
        profile: PlayerProfile,
        settings: Optional[RoomSettings] = None,
        center_location: Optional[Location] = None
    ) -> RoomSnapshot:
        """
        建立新房間（含 Host 玩家）

        參數：
            host_id: Host 的玩家 id
            profile: Host 的顯示名稱 / 頭像
            settings: 房間設定，預設 RoomSettings()
            center_location: 預先釘選的 skillcheck 中心點

        返回：
            新房間的 RoomSnapshot

        異常：
            CodeGenerationExhausted: 連續 room_code_max_attempts 次都碰撞

        注意：
            - 36^6 的代碼空間碰撞機率極低，但兩個請求可能同時拿到同一個代碼，
              所以除了事先檢查，也要處理 insert 時的 IntegrityError
        """
        max_attempts = self.settings.room_code_max_attempts
        for attempt in range(1, max_attempts + 1):
            code = generate_room_code()
            if self.store.exists(code):
                logger.warning(f"Room code collision detected ({code}), attempt {attempt}/{max_attempts}")
                continue

            room = RoomSnapshot(
                code=code,
                host_id=host_id,
                status=RoomStatus.WAITING,
                players={
                    host_id: PlayerState(
                        uid=host_id,
                        display_name=profile.display_name,
                        profile_picture_url=profile.profile_picture_url,
                    )
                },
                settings=settings or RoomSettings(),
                created_at=utcnow(),
                skillcheck_center_location=center_location,
            )
            try:
                self.store.insert(room)
            except IntegrityError:
                logger.warning(f"Room code {code} taken concurrently, attempt {attempt}/{max_attempts}")
                continue

            logger.info(f"Created room {code} for host {host_id}")
            return room

        raise CodeGenerationExhausted(max_attempts)

    def get_room(self, room_code: str, use_cache: bool = True) -> RoomSnapshot:
        """
        取得房間

        異常：
            RoomNotFound: 房間不存在
        """
        room = self.store.get(room_code, use_cache=use_cache)
        if room is None:
            raise RoomNotFound(room_code)
        return room

    def join_room(self, room_code: str, player_id: str, profile: PlayerProfile) -> Optional[RoomSnapshot]:
        """
        加入房間；同一個 id 重新加入只會更新資料

        返回：
            加入後的 RoomSnapshot；房間不存在時為 None

        異常：
            GameAlreadyStarted: 房間不在 waiting
            RoomFull: 房間已滿
        """
        try:
            room = self.store.apply_atomic(room_code, lambda current: rules.add_player(current, player_id, profile))
        except RoomNotFound:
            logger.info(f"Player {player_id} tried to join missing room {room_code}")
            return None

        logger.info(f"Player {player_id} joined room {room_code} ({len(room.players)} players)")
        return room

    def leave_room(self, room_code: str, player_id: str) -> None:
        """離開房間；Host 離開時整個房間刪除"""
        room = self.store.get(room_code)
        if room is None:
            return

        if room.host_id == player_id:
            self.store.delete(room_code)
            logger.info(f"Host {player_id} left, room {room_code} deleted")
            return

        try:
            self.store.apply_atomic(room_code, lambda current: rules.remove_player(current, player_id))
        except RoomNotFound:
            return
        logger.info(f"Player {player_id} left room {room_code}")

    def kick_player(self, room_code: str, host_id: str, target_id: str) -> RoomSnapshot:
        """
        異常：
            RoomNotFound / NotHost / SelfKick / PlayerNotFound
        """
        room = self.store.apply_atomic(room_code, lambda current: rules.kick_player(current, host_id, target_id))
        logger.info(f"Host {host_id} kicked {target_id} from room {room_code}")
        return room

    def update_settings(
        self,
        room_code: str,
        host_id: str,
        settings: RoomSettings,
        center_location: Optional[Location] = None
    ) -> RoomSnapshot:
        room = self.store.apply_atomic(
            room_code,
            lambda current: rules.change_settings(current, host_id, settings, center_location)
        )
        logger.info(f"Room {room_code} settings updated by {host_id}")
        return room

    def clear_player_location(self, room_code: str, player_id: str) -> bool:
        try:
            updated = self.store.apply_atomic(room_code, lambda current: rules.clear_location(current, player_id))
        except RoomNotFound:
            return False
        return updated is not None

    def get_current_user_rooms(self, player_id: str) -> List[RoomSnapshot]:
        """玩家目前所在、還沒結束的房間（新的在前）"""
        rooms = self.store.list_rooms(OPEN_STATUSES)
        return [room for room in rooms if player_id in room.players]
