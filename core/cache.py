"""
RoomCache：RoomStore 專用的短期快取

- 有上限（超過時淘汰最舊的項目）
- 有 TTL
- 只給唯讀的呼叫者用；RoomStore 每次寫入都會 invalidate 對應的房間
- 做決策的程式碼（勝負判斷、階段轉換）一律直接讀資料庫
"""
import threading
import time
from collections import OrderedDict
from typing import Optional, Tuple

from schemas import RoomSnapshot


class RoomCache:

    def __init__(self, ttl_seconds: float = 5, max_entries: int = 256):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, Tuple[float, RoomSnapshot]]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, room_code: str) -> Optional[RoomSnapshot]:
        with self._lock:
            entry = self._entries.get(room_code)
            if entry is None:
                return None
            stored_at, snapshot = entry
            if time.monotonic() - stored_at > self.ttl_seconds:
                del self._entries[room_code]
                return None
            self._entries.move_to_end(room_code)
            return snapshot.model_copy(deep=True)

    def put(self, room_code: str, snapshot: RoomSnapshot) -> None:
        with self._lock:
            self._entries[room_code] = (time.monotonic(), snapshot.model_copy(deep=True))
            self._entries.move_to_end(room_code)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def invalidate(self, room_code: str) -> None:
        with self._lock:
            self._entries.pop(room_code, None)

    def __len__(self):
        with self._lock:
            return len(self._entries)
