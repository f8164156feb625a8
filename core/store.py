"""
RoomStore：rooms / game_results 的存取層

職責：
1. 讀取 / 新增 / 刪除房間
2. 條件式更新（WHERE status = 預期狀態），是階段轉換的並發原語
3. 套用規則（core.rules）的兩種方式：
   - apply_atomic：鎖定該列後在同一個 transaction 內改寫（Tier-1）
   - apply_fallback：讀取 -> 改寫 -> 整份寫回，不防 lost update（Tier-2）
4. 寫入成功後：清掉快取、通知 ChangeFeed

所有方法都是同步的，每次呼叫開一個自己的 Session；
async 的呼叫者透過 asyncio.to_thread 使用。
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from database import transactional
from models import Room, GameResult, RoomStatus
from schemas import RoomSnapshot, GameResultSnapshot, MUTABLE_ROOM_FIELDS
from core.cache import RoomCache
from core.exceptions import RoomNotFound
from core.feed import ChangeFeed
from core.locks import lock_room
from core.rules import Rule

logger = logging.getLogger(__name__)


def to_column(value: Any) -> Any:
    """把 pydantic 物件轉成 JSON 欄位可存的格式；enum / datetime 交給 SQLAlchemy"""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {key: to_column(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_column(item) for item in value]
    return value


def _changed_fields(current: RoomSnapshot, updated: RoomSnapshot) -> Dict[str, Any]:
    return {
        field: getattr(updated, field)
        for field in MUTABLE_ROOM_FIELDS
        if getattr(updated, field) != getattr(current, field)
    }


def _result_row(result: GameResultSnapshot) -> GameResult:
    return GameResult(
        room_id=result.room_id,
        winners=result.winners,
        elimination_order=list(result.elimination_order),
        game_started_at=result.game_started_at,
        game_ended_at=result.game_ended_at,
        final_players=to_column(result.final_players),
    )


@transactional
def _apply_locked(db: Session, room_code: str, rule: Rule) -> Optional[RoomSnapshot]:
    row = lock_room(room_code, db)
    current = RoomSnapshot.model_validate(row)
    updated = rule(current)
    if updated is None:
        return None

    for field, value in _changed_fields(current, updated).items():
        setattr(row, field, to_column(value))
    return updated


@transactional
def _finish_round(db: Session, result: GameResultSnapshot, from_statuses: Iterable[RoomStatus]) -> bool:
    count = db.query(Room).filter(
        Room.code == result.room_id,
        Room.status.in_(list(from_statuses))
    ).update(
        {"status": RoomStatus.FINISHED, "game_ended_at": result.game_ended_at},
        synchronize_session=False
    )
    if count == 0:
        # 另一個寫入者已經結束了這一局
        return False

    db.add(_result_row(result))
    return True


class RoomStore:
    """Persistent room store backed by SQLAlchemy"""

    def __init__(self, session_factory, feed: Optional[ChangeFeed] = None, cache: Optional[RoomCache] = None):
        self._session_factory = session_factory
        self.feed = feed
        self.cache = cache

    # ============ 讀取 ============

    def get(self, room_code: str, use_cache: bool = False) -> Optional[RoomSnapshot]:
        """
        讀取房間

        參數：
            use_cache: 只有唯讀的呼叫者（API 查詢、輪詢）可以用 True

        返回：
            RoomSnapshot，房間不存在時為 None
        """
        if use_cache and self.cache is not None:
            cached = self.cache.get(room_code)
            if cached is not None:
                return cached

        with self._session_factory() as db:
            row = db.query(Room).filter(Room.code == room_code).first()
            snapshot = RoomSnapshot.model_validate(row) if row else None

        if snapshot is not None and self.cache is not None:
            self.cache.put(room_code, snapshot)
        return snapshot

    def exists(self, room_code: str) -> bool:
        with self._session_factory() as db:
            return db.query(Room.code).filter(Room.code == room_code).first() is not None

    def list_rooms(self, statuses: Iterable[RoomStatus]) -> List[RoomSnapshot]:
        with self._session_factory() as db:
            rows = db.query(Room).filter(
                Room.status.in_(list(statuses))
            ).order_by(Room.created_at.desc()).all()
            return [RoomSnapshot.model_validate(row) for row in rows]

    # ============ 寫入 ============

    def insert(self, snapshot: RoomSnapshot) -> None:
        """新增房間；代碼重複時 SQLAlchemy 會丟 IntegrityError"""
        with self._session_factory() as db:
            values = {field: to_column(getattr(snapshot, field)) for field in MUTABLE_ROOM_FIELDS}
            db.add(Room(code=snapshot.code, host_id=snapshot.host_id, created_at=snapshot.created_at, **values))
            db.commit()
        self._committed(snapshot.code)

    def update(self, room_code: str, fields: Dict[str, Any], where: Optional[Dict[str, Any]] = None) -> bool:
        """
        部分欄位更新（可帶條件）

        參數：
            fields: 欄位 -> 新值（pydantic 物件會自動轉 JSON）
            where: 欄位 -> 預期值；None 表示 IS NULL，tuple / list 表示 IN

        返回：
            True 如果有一列被更新；條件不符或房間不存在時為 False

        範例：
            # 只有還在 headstart 才轉成 active，多個客戶端同時觸發也只會生效一次
            store.update(code, {"status": RoomStatus.ACTIVE}, where={"status": RoomStatus.HEADSTART})
        """
        with self._session_factory() as db:
            query = db.query(Room).filter(Room.code == room_code)
            for column, expected in (where or {}).items():
                attr = getattr(Room, column)
                if expected is None:
                    query = query.filter(attr.is_(None))
                elif isinstance(expected, (tuple, list, set)):
                    query = query.filter(attr.in_(list(expected)))
                else:
                    query = query.filter(attr == expected)

            count = query.update(
                {column: to_column(value) for column, value in fields.items()},
                synchronize_session=False
            )
            db.commit()

        if count:
            self._committed(room_code)
        return bool(count)

    def delete(self, room_code: str) -> bool:
        with self._session_factory() as db:
            count = db.query(Room).filter(Room.code == room_code).delete(synchronize_session=False)
            db.commit()

        if self.cache is not None:
            self.cache.invalidate(room_code)
        if count and self.feed is not None:
            self.feed.publish(room_code, None)
        return bool(count)

    # ============ 套用規則 ============

    def apply_atomic(self, room_code: str, rule: Rule) -> Optional[RoomSnapshot]:
        """
        Tier-1：鎖定房間列，在同一個 transaction 內讀取、套用規則、寫回

        返回：
            套用後的 RoomSnapshot；規則判定 no-op 時為 None

        異常：
            RoomNotFound: 房間不存在
            規則本身的驗證錯誤（會 rollback 後原樣拋出）
        """
        with self._session_factory() as db:
            updated = _apply_locked(db, room_code, rule)

        if updated is not None:
            self._committed(room_code)
        return updated

    def apply_fallback(self, room_code: str, rule: Rule) -> Optional[RoomSnapshot]:
        """
        Tier-2：讀取 -> 套用規則 -> 把有變動的欄位整份寫回

        不防止兩個 fallback 寫入者同時改 players map 造成的 lost update；
        這是 fallback 路徑已知且接受的風險。
        """
        current = self.get(room_code)
        if current is None:
            raise RoomNotFound(room_code)

        updated = rule(current)
        if updated is None:
            return None

        changed = _changed_fields(current, updated)
        if changed:
            self.update(room_code, changed)
        return updated

    def apply_guarded(self, room_code: str, rule: Rule, where: Dict[str, Any]) -> Optional[RoomSnapshot]:
        """
        讀取 -> 套用規則 -> 條件式寫回（階段轉換用）

        參數：
            where: 同 update()；寫回時房間必須仍符合這些條件

        返回：
            套用後的 RoomSnapshot；房間不存在、規則 no-op、或條件不符
            （別的寫入者先完成了同一個轉換）時為 None
        """
        current = self.get(room_code)
        if current is None:
            return None

        updated = rule(current)
        if updated is None:
            return None

        changed = _changed_fields(current, updated)
        if not changed or not self.update(room_code, changed, where=where):
            return None
        return updated

    # ============ 歷史紀錄 ============

    def finish_round(self, result: GameResultSnapshot, from_statuses: Iterable[RoomStatus]) -> bool:
        """
        在同一個 transaction 內：把房間改成 finished（有條件）並新增一筆 GameResult

        返回：
            False 表示房間已經不在預期狀態（別人先結束了），什麼都沒寫
        """
        with self._session_factory() as db:
            finished = _finish_round(db, result, from_statuses)

        if finished:
            self._committed(result.room_id)
        return finished

    def append_history(self, result: GameResultSnapshot) -> GameResultSnapshot:
        with self._session_factory() as db:
            row = _result_row(result)
            db.add(row)
            db.commit()
            db.refresh(row)
            return GameResultSnapshot.model_validate(row)

    def latest_result(self, room_code: str) -> Optional[GameResultSnapshot]:
        with self._session_factory() as db:
            row = db.query(GameResult).filter(
                GameResult.room_id == room_code
            ).order_by(GameResult.game_ended_at.desc(), GameResult.id.desc()).first()
            return GameResultSnapshot.model_validate(row) if row else None

    def list_results(self) -> List[GameResultSnapshot]:
        with self._session_factory() as db:
            rows = db.query(GameResult).order_by(GameResult.game_ended_at.desc()).all()
            return [GameResultSnapshot.model_validate(row) for row in rows]

    # ============ 內部 ============

    def _committed(self, room_code: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(room_code)
        if self.feed is not None and self.feed.has_subscribers(room_code):
            self.feed.publish(room_code, self.get(room_code))
