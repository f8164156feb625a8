"""
並發控制工具

Tier-1 寫入路徑用的 Database-level 鎖定：同一個房間同一時間只有一個寫入者。

- PostgreSQL 等：SELECT ... FOR UPDATE 行級鎖（悲觀鎖）
- SQLite：不支援 FOR UPDATE（SQLAlchemy 會略過），改由 database.make_engine
  讓每個 transaction 以 BEGIN IMMEDIATE 開始，整個資料庫的寫入因此序列化
"""
from sqlalchemy.orm import Session, Query

from models import Room
from core.exceptions import RoomNotFound


def with_room_lock(room_code: str, db: Session) -> Query:
    """
    鎖定一個 Room（行級鎖）的 Query

    參數：
        room_code: 6 位房間代碼
        db: SQLAlchemy Session

    返回：
        Query object（需要呼叫 .first() 來取得結果）

    注意：
        - nowait=False：鎖被佔用時等待，而不是立刻失敗；
          等待時間由呼叫者的 Tier-1 逾時控制
        - 鎖在 commit / rollback 時釋放，必須在 transaction 內使用
    """
    return db.query(Room).filter(
        Room.code == room_code
    ).with_for_update(nowait=False)


def lock_room(room_code: str, db: Session) -> Room:
    """
    取得並鎖定房間列

    異常：
        RoomNotFound: 房間不存在
    """
    row = with_room_lock(room_code, db).first()
    if row is None:
        raise RoomNotFound(room_code)
    return row
