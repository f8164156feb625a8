"""
Change feed：房間資料變更通知

RoomStore 每次寫入成功後呼叫 publish()，把最新的 RoomSnapshot（房間被刪除時為 None）
交給所有訂閱這個房間的 callback。

通知只負責 UI 即時性；遊戲正確性靠的是排程器自己的計時器，
所以漏掉通知是可以接受的（WebSocket 端另有輪詢補強）。
"""
import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from schemas import RoomSnapshot

logger = logging.getLogger(__name__)

RoomCallback = Callable[[Optional[RoomSnapshot]], None]


class ChangeFeed:
    """In-process publish / subscribe hub, keyed by room code"""

    def __init__(self):
        self._subscribers: Dict[str, List[RoomCallback]] = defaultdict(list)
        # publish 可能來自 API 的 worker thread，也可能來自計時器
        self._lock = threading.Lock()

    def subscribe(self, room_code: str, on_change: RoomCallback) -> Callable[[], None]:
        """
        訂閱房間變更

        返回：
            unsubscribe()，重複呼叫無害
        """
        with self._lock:
            self._subscribers[room_code].append(on_change)

        def unsubscribe():
            with self._lock:
                callbacks = self._subscribers.get(room_code)
                if callbacks and on_change in callbacks:
                    callbacks.remove(on_change)
                if callbacks is not None and not callbacks:
                    del self._subscribers[room_code]

        return unsubscribe

    def has_subscribers(self, room_code: str) -> bool:
        with self._lock:
            return bool(self._subscribers.get(room_code))

    def publish(self, room_code: str, snapshot: Optional[RoomSnapshot]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(room_code, ()))

        for callback in callbacks:
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Room {room_code} subscriber failed: {e}", exc_info=True)
