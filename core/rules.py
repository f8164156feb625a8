"""
遊戲規則：(RoomSnapshot, 事件) -> 新的 RoomSnapshot

每條規則只寫一次，是純函式：
- 不碰資料庫，不修改傳入的 room（先 deep copy）
- 回傳 None 代表「不需要改變」（已經套用過 / 前置條件不符），呼叫者視為 no-op
- 驗證錯誤直接 raise（RoomFull、NotHost ...）

RoomStore 的原子路徑（鎖定後改寫）和 fallback 路徑（讀取 -> 改寫 -> 寫回）
都只是套用同一條規則的方式不同。
"""
import logging
import random
from datetime import datetime, timezone
from typing import Callable, List, Optional

from models import RoomStatus, Role
from schemas import RoomSnapshot, RoomSettings, PlayerState, PlayerProfile, Location
from services.placement_service import generate_skillcheck_positions, generate_escape_area
from core.exceptions import (
    RoomFull,
    GameAlreadyStarted,
    InsufficientPlayers,
    MissingCenterLocation,
    NotHost,
    SelfKick,
    PlayerNotFound,
)

logger = logging.getLogger(__name__)

ESCAPE_TIMER_EXPIRED = "escape_timer_expired"

# 回合進行中的狀態（可以淘汰玩家、更新位置）
IN_PROGRESS = (RoomStatus.HEADSTART, RoomStatus.ACTIVE)

Rule = Callable[[RoomSnapshot], Optional[RoomSnapshot]]


# ============ 房間成員 ============

def add_player(room: RoomSnapshot, player_id: str, profile: PlayerProfile) -> RoomSnapshot:
    if room.status != RoomStatus.WAITING:
        raise GameAlreadyStarted(f"Room {room.code} is not accepting players (status: {room.status.value})")

    # 重新加入同一個 id 只是覆寫，不佔新名額
    if player_id not in room.players and len(room.players) >= room.settings.max_players:
        raise RoomFull(f"Room {room.code} is full ({room.settings.max_players} players)")

    updated = room.model_copy(deep=True)
    updated.players[player_id] = PlayerState(
        uid=player_id,
        display_name=profile.display_name,
        profile_picture_url=profile.profile_picture_url,
    )
    return updated


def remove_player(room: RoomSnapshot, player_id: str) -> Optional[RoomSnapshot]:
    if player_id not in room.players:
        return None
    updated = room.model_copy(deep=True)
    del updated.players[player_id]
    return updated


def kick_player(room: RoomSnapshot, host_id: str, target_id: str) -> RoomSnapshot:
    if room.host_id != host_id:
        raise NotHost(host_id)
    if host_id == target_id:
        raise SelfKick("Host cannot kick themselves")
    if target_id not in room.players:
        raise PlayerNotFound(target_id)
    return remove_player(room, target_id)


def change_settings(
    room: RoomSnapshot,
    host_id: str,
    settings: RoomSettings,
    center_location: Optional[Location] = None
) -> RoomSnapshot:
    if room.host_id != host_id:
        raise NotHost(host_id)
    if room.status != RoomStatus.WAITING:
        raise GameAlreadyStarted(f"Cannot change settings of room {room.code} during a game")

    updated = room.model_copy(deep=True)
    updated.settings = settings
    if center_location is not None:
        updated.skillcheck_center_location = center_location
    return updated


# ============ 階段轉換 ============

def assign_roles(room: RoomSnapshot, now: datetime) -> RoomSnapshot:
    """
    waiting -> headstart：隨機分配角色

    異常：
        GameAlreadyStarted: 房間不在 waiting
        InsufficientPlayers: 少於 2 人，或少於 killer_count + 1 人
        MissingCenterLocation: Skillcheck 模式但沒有任何中心點
    """
    if room.status != RoomStatus.WAITING:
        raise GameAlreadyStarted(f"Room {room.code} already started (status: {room.status.value})")

    player_ids = list(room.players)
    killer_count = room.settings.killer_count
    if len(player_ids) < 2:
        raise InsufficientPlayers(f"Need at least 2 players to start, got {len(player_ids)}")
    if len(player_ids) < killer_count + 1:
        raise InsufficientPlayers(
            f"Need at least {killer_count + 1} players for {killer_count} killer(s), got {len(player_ids)}"
        )

    updated = room.model_copy(deep=True)

    # 中心點在開始時就釘選，之後 skillcheck / escape area 都用同一點
    if room.settings.skillcheck_mode:
        center = room.center_location()
        if center is None:
            raise MissingCenterLocation(
                f"Room {room.code} uses skillchecks but has no pinned location and no host GPS sample"
            )
        updated.skillcheck_center_location = center

    random.shuffle(player_ids)
    killers = set(player_ids[:killer_count])
    for uid, player in updated.players.items():
        player.role = Role.KILLER if uid in killers else Role.SURVIVOR
        player.is_alive = True

    updated.status = RoomStatus.HEADSTART
    updated.headstart_started_at = now
    return updated


def begin_active(room: RoomSnapshot) -> Optional[RoomSnapshot]:
    """
    headstart -> active

    game_started_at 用開始時預先算好的期限，不用「現在」，
    讓每個客戶端算出來的時間都一致。
    """
    if room.status != RoomStatus.HEADSTART:
        return None

    updated = room.model_copy(deep=True)
    updated.status = RoomStatus.ACTIVE
    updated.game_started_at = room.headstart_deadline()

    if room.settings.skillcheck_mode:
        center = room.center_location()
        if center is None:
            logger.error(f"Room {room.code} entered active phase without a skillcheck center")
        else:
            updated.skillchecks = generate_skillcheck_positions(
                center,
                room.settings.skillchecks.count,
                room.settings.skillchecks.max_distance_from_host
            )
    return updated


def reset_round(room: RoomSnapshot) -> Optional[RoomSnapshot]:
    """finished -> waiting：清掉回合狀態，保留成員"""
    if room.status != RoomStatus.FINISHED:
        return None

    updated = room.model_copy(deep=True)
    for player in updated.players.values():
        player.is_alive = True
        player.role = None
        player.eliminated_at = None
        player.eliminated_by = None
        player.has_escaped = False
        player.escaped_at = None

    updated.status = RoomStatus.WAITING
    updated.headstart_started_at = None
    updated.game_started_at = None
    updated.game_ended_at = None
    updated.escape_timer_started_at = None
    updated.skillchecks = None
    updated.escape_area = None
    updated.all_skillchecks_completed = False
    return updated


# ============ 玩家事件 ============

def eliminate(room: RoomSnapshot, player_id: str, eliminated_by: Optional[str], now: datetime) -> Optional[RoomSnapshot]:
    """已經淘汰（或已逃脫）視為已套用，容忍重複按下「我被抓了」"""
    player = room.players.get(player_id)
    if player is None:
        raise PlayerNotFound(player_id)
    if room.status not in IN_PROGRESS or not player.is_alive or player.has_escaped:
        return None

    updated = room.model_copy(deep=True)
    target = updated.players[player_id]
    target.is_alive = False
    target.eliminated_at = now
    if eliminated_by:
        target.eliminated_by = eliminated_by
    return updated


def _can_act_as_survivor(room: RoomSnapshot, player_id: str, debug_bypass: bool) -> bool:
    player = room.players.get(player_id)
    if player is None:
        return False
    if debug_bypass:
        if player_id != room.host_id:
            raise NotHost(player_id)
        return True
    return player.still_playing


def complete_skillcheck(
    room: RoomSnapshot,
    skillcheck_id: str,
    player_id: str,
    debug_bypass: bool,
    now: datetime
) -> Optional[RoomSnapshot]:
    if room.status != RoomStatus.ACTIVE or not room.skillchecks:
        return None
    if not _can_act_as_survivor(room, player_id, debug_bypass):
        logger.info(f"Player {player_id} cannot complete skillchecks in room {room.code}")
        return None

    updated = room.model_copy(deep=True)
    for skillcheck in updated.skillchecks:
        if skillcheck.id == skillcheck_id:
            if skillcheck.is_completed:
                return None
            skillcheck.is_completed = True
            skillcheck.completed_by.append(player_id)
            skillcheck.completed_at = now
            return updated
    return None


def mark_escaped(room: RoomSnapshot, player_id: str, debug_bypass: bool, now: datetime) -> Optional[RoomSnapshot]:
    if room.status != RoomStatus.ACTIVE or room.escape_area is None:
        return None
    if not _can_act_as_survivor(room, player_id, debug_bypass):
        logger.info(f"Player {player_id} cannot escape in room {room.code}")
        return None
    if room.players[player_id].has_escaped:
        return None

    updated = room.model_copy(deep=True)
    player = updated.players[player_id]
    player.has_escaped = True
    player.escaped_at = now
    updated.escape_area.escaped_players.append(player_id)
    return updated


def all_skillchecks_done(room: RoomSnapshot) -> bool:
    return bool(room.skillchecks) and all(sc.is_completed for sc in room.skillchecks)


def reveal_escape_area(
    room: RoomSnapshot,
    now: datetime,
    default_distance: float,
    from_skillchecks: bool = False
) -> Optional[RoomSnapshot]:
    """
    產生並公開 escape area，同時開始逃脫計時

    觸發來源：
    - 所有 skillcheck 完成（from_skillchecks=True）
    - 回合計時結束（skillcheck 模式）
    """
    if room.status != RoomStatus.ACTIVE or room.escape_area is not None:
        return None

    center = room.center_location()
    if center is None:
        logger.error(f"No center location available for escape area in room {room.code}")
        return None

    max_distance = room.settings.skillchecks.max_distance_from_host or default_distance
    updated = room.model_copy(deep=True)
    updated.escape_area = generate_escape_area(center, max_distance)
    updated.escape_timer_started_at = now
    if from_skillchecks:
        updated.all_skillchecks_completed = True
    return updated


def expire_escape_timer(room: RoomSnapshot, now: datetime) -> Optional[RoomSnapshot]:
    """逃脫計時結束：還在場上的 survivor 全部淘汰"""
    if room.status != RoomStatus.ACTIVE or room.escape_area is None:
        return None

    remaining = room.still_playing_survivors()
    if not remaining:
        return None

    updated = room.model_copy(deep=True)
    for survivor in remaining:
        target = updated.players[survivor.uid]
        target.is_alive = False
        target.eliminated_at = now
        target.eliminated_by = ESCAPE_TIMER_EXPIRED
    return updated


# ============ 位置 ============

def update_location(room: RoomSnapshot, player_id: str, location: Location, now: datetime) -> Optional[RoomSnapshot]:
    # waiting 時也要收：skillcheck 模式開始時會拿 host 的最後位置當中心點
    if player_id not in room.players:
        return None
    updated = room.model_copy(deep=True)
    player = updated.players[player_id]
    player.location = location
    player.last_location_update = now
    return updated


def clear_location(room: RoomSnapshot, player_id: str) -> Optional[RoomSnapshot]:
    player = room.players.get(player_id)
    if player is None or (player.location is None and player.last_location_update is None):
        return None
    updated = room.model_copy(deep=True)
    updated.players[player_id].location = None
    updated.players[player_id].last_location_update = None
    return updated


# ============ 結算 ============

def elimination_order(room: RoomSnapshot) -> List[str]:
    eliminated = [p for p in room.players.values() if not p.is_alive]
    eliminated.sort(key=lambda p: p.eliminated_at or datetime.min.replace(tzinfo=timezone.utc))
    return [p.uid for p in eliminated]
