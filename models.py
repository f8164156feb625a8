"""
資料庫模型

rooms 表：每個房間一列，所有回合狀態都放在同一列（JSON 欄位），
這一列就是整個遊戲的一致性單位。

game_results 表：只會新增，不會修改。
"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Boolean, Enum, JSON
from sqlalchemy.sql import func

from database import Base


class RoomStatus(str, enum.Enum):
    WAITING = "waiting"
    HEADSTART = "headstart"
    ACTIVE = "active"
    FINISHED = "finished"


class Role(str, enum.Enum):
    KILLER = "killer"
    SURVIVOR = "survivor"


class Winners(str, enum.Enum):
    KILLERS = "killers"
    SURVIVORS = "survivors"


class Room(Base):
    __tablename__ = "rooms"

    code = Column(String(6), primary_key=True)
    host_id = Column(String(128), nullable=False)
    status = Column(Enum(RoomStatus), nullable=False, default=RoomStatus.WAITING, index=True)

    # none_as_null：讓 Python None 寫成 SQL NULL，條件更新才能用 IS NULL 判斷
    players = Column(JSON, nullable=False, default=dict)
    settings = Column(JSON, nullable=False)
    skillchecks = Column(JSON(none_as_null=True), nullable=True)
    escape_area = Column(JSON(none_as_null=True), nullable=True)
    skillcheck_center_location = Column(JSON(none_as_null=True), nullable=True)
    all_skillchecks_completed = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    headstart_started_at = Column(DateTime(timezone=True), nullable=True)
    game_started_at = Column(DateTime(timezone=True), nullable=True)
    game_ended_at = Column(DateTime(timezone=True), nullable=True)
    escape_timer_started_at = Column(DateTime(timezone=True), nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class GameResult(Base):
    __tablename__ = "game_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    room_id = Column(String(6), nullable=False, index=True)
    winners = Column(Enum(Winners), nullable=False)
    elimination_order = Column(JSON, nullable=False, default=list)
    game_started_at = Column(DateTime(timezone=True), nullable=True)
    game_ended_at = Column(DateTime(timezone=True), nullable=False)
    final_players = Column(JSON, nullable=False)
