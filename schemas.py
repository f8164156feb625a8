"""
Pydantic schemas

兩類：
1. 遊戲狀態（RoomSnapshot 以及內嵌的 PlayerState / Skillcheck / EscapeArea），
   同時是 JSON 欄位的格式，也是 API / WebSocket 回傳的格式
2. API request / response body
"""
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import RoomStatus, Role, Winners
from core.timeutils import ensure_utc, after_minutes


class GameModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @field_validator("*", mode="after")
    @classmethod
    def _utc_datetimes(cls, value):
        if isinstance(value, datetime):
            return ensure_utc(value)
        return value


# ============ 遊戲狀態 ============

class Location(GameModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = None
    timestamp: Optional[datetime] = None


class PlayerState(GameModel):
    uid: str
    display_name: str
    profile_picture_url: Optional[str] = None
    is_alive: bool = True
    role: Optional[Role] = None
    eliminated_at: Optional[datetime] = None
    eliminated_by: Optional[str] = None
    has_escaped: bool = False
    escaped_at: Optional[datetime] = None
    location: Optional[Location] = None
    last_location_update: Optional[datetime] = None

    @property
    def is_survivor(self) -> bool:
        return self.role == Role.SURVIVOR

    @property
    def still_playing(self) -> bool:
        """存活且尚未逃脫的 survivor"""
        return self.is_survivor and self.is_alive and not self.has_escaped


class SkillcheckSettings(GameModel):
    enabled: bool = False
    count: int = Field(3, ge=1, le=20)
    max_distance_from_host: float = Field(500, gt=0)


class RoomSettings(GameModel):
    killer_count: int = Field(1, ge=1, le=3)
    round_length_minutes: float = Field(10, gt=0)
    headstart_minutes: float = Field(1, ge=0)
    max_players: int = Field(15, ge=2)
    skillchecks: SkillcheckSettings = Field(default_factory=SkillcheckSettings)

    @property
    def skillcheck_mode(self) -> bool:
        return self.skillchecks.enabled


class Skillcheck(GameModel):
    id: str
    location: Location
    is_completed: bool = False
    completed_by: List[str] = Field(default_factory=list)
    completed_at: Optional[datetime] = None


class EscapeArea(GameModel):
    id: str
    location: Location
    is_revealed: bool = True
    revealed_at: Optional[datetime] = None
    escaped_players: List[str] = Field(default_factory=list)


# RoomSnapshot 中可寫回 rooms 表的欄位（code / host_id / created_at 建立後不變）
MUTABLE_ROOM_FIELDS = (
    "status",
    "players",
    "settings",
    "skillchecks",
    "escape_area",
    "skillcheck_center_location",
    "all_skillchecks_completed",
    "headstart_started_at",
    "game_started_at",
    "game_ended_at",
    "escape_timer_started_at",
)


class RoomSnapshot(GameModel):
    code: str
    host_id: str
    status: RoomStatus = RoomStatus.WAITING
    players: Dict[str, PlayerState] = Field(default_factory=dict)
    settings: RoomSettings
    created_at: datetime
    headstart_started_at: Optional[datetime] = None
    game_started_at: Optional[datetime] = None
    game_ended_at: Optional[datetime] = None
    escape_timer_started_at: Optional[datetime] = None
    skillchecks: Optional[List[Skillcheck]] = None
    escape_area: Optional[EscapeArea] = None
    skillcheck_center_location: Optional[Location] = None
    all_skillchecks_completed: bool = False

    def survivors(self) -> List[PlayerState]:
        return [p for p in self.players.values() if p.role == Role.SURVIVOR]

    def killers(self) -> List[PlayerState]:
        return [p for p in self.players.values() if p.role == Role.KILLER]

    def still_playing_survivors(self) -> List[PlayerState]:
        return [p for p in self.players.values() if p.still_playing]

    def eliminated_survivors(self) -> List[PlayerState]:
        return [p for p in self.survivors() if not p.is_alive and not p.has_escaped]

    def headstart_deadline(self) -> Optional[datetime]:
        if self.headstart_started_at is None:
            return None
        return after_minutes(self.headstart_started_at, self.settings.headstart_minutes)

    def round_deadline(self) -> Optional[datetime]:
        if self.game_started_at is None:
            return None
        return after_minutes(self.game_started_at, self.settings.round_length_minutes)

    def center_location(self) -> Optional[Location]:
        """釘選的中心點優先，否則用 Host 最後的 GPS 位置"""
        if self.skillcheck_center_location is not None:
            return self.skillcheck_center_location
        host = self.players.get(self.host_id)
        return host.location if host else None


class GameResultSnapshot(GameModel):
    id: Optional[int] = None
    room_id: str
    winners: Winners
    elimination_order: List[str] = Field(default_factory=list)
    game_started_at: Optional[datetime] = None
    game_ended_at: datetime
    final_players: Dict[str, PlayerState] = Field(default_factory=dict)


# ============ API request ============

class PlayerProfile(BaseModel):
    display_name: str = Field(min_length=1, max_length=50)
    profile_picture_url: Optional[str] = None


class RoomCreate(BaseModel):
    host_id: str
    profile: PlayerProfile
    settings: RoomSettings = Field(default_factory=RoomSettings)
    center_location: Optional[Location] = None


class PlayerJoin(BaseModel):
    player_id: str
    profile: PlayerProfile


class PlayerLeave(BaseModel):
    player_id: str


class PlayerKick(BaseModel):
    host_id: str
    target_id: str


class SettingsUpdate(BaseModel):
    host_id: str
    settings: RoomSettings
    center_location: Optional[Location] = None


class EliminationSubmit(BaseModel):
    player_id: str
    eliminated_by: Optional[str] = None


class SkillcheckSubmit(BaseModel):
    player_id: str
    debug_bypass: bool = False


class EscapeSubmit(BaseModel):
    player_id: str
    debug_bypass: bool = False


# ============ API response ============

class RoomCreatedResponse(BaseModel):
    room_code: str


class ActionResponse(BaseModel):
    # applied：這次呼叫改變了房間；noop：已套用過或前置條件不符
    status: str


class WinCheckResponse(BaseModel):
    ended: bool
    winners: Optional[Winners] = None
    escape_area_revealed: bool = False


class GameHistoryEntry(BaseModel):
    room_id: str
    winners: Winners
    game_started_at: Optional[datetime] = None
    game_ended_at: datetime
    player_role: Optional[Role] = None
    player_won: bool
    placement: int
    game_duration_minutes: float


class PlayerGameStats(BaseModel):
    games_played: int = 0
    wins: int = 0
    losses: int = 0
    killer_wins: int = 0
    survivor_wins: int = 0
    avg_placement: float = 0
    total_eliminations: int = 0
