"""
PhaseScheduler：延遲執行的階段轉換

每個延遲動作是一個 asyncio task：sleep 到期限後執行 callback。

設計重點：
- 不提供個別取消；每個 callback 執行前都會重新讀取房間並檢查狀態，
  過期的排程自然變成 no-op
- callback 的例外一律在這裡記錄後吞掉，計時器裡丟出的例外會讓這一局
  永遠不會再被檢查
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional, Set

from core.timeutils import seconds_until

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[Any]]


class PhaseScheduler:

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    def schedule_at(self, room_code: str, name: str, deadline: datetime, callback: Callback) -> Optional[asyncio.Task]:
        return self.schedule_in(room_code, name, seconds_until(deadline), callback)

    def schedule_in(self, room_code: str, name: str, delay_seconds: float, callback: Callback) -> Optional[asyncio.Task]:
        """
        排程一個延遲 callback

        參數：
            room_code: 房間代碼（只用於 log 和 task 名稱）
            name: 動作名稱，例如 "headstart"、"round-deadline"
            delay_seconds: 延遲秒數（負數視為 0）
            callback: 無參數的 async 函式

        返回：
            asyncio.Task；scheduler 已關閉時為 None
        """
        if self._closed:
            logger.warning(f"Scheduler closed, dropping {name} for room {room_code}")
            return None

        task = asyncio.get_running_loop().create_task(
            self._run(room_code, name, max(0.0, delay_seconds), callback),
            name=f"{room_code}:{name}"
        )
        # 保留 reference，避免 task 被 GC
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.debug(f"Scheduled {name} for room {room_code} in {delay_seconds:.1f}s")
        return task

    async def _run(self, room_code: str, name: str, delay_seconds: float, callback: Callback) -> None:
        await asyncio.sleep(delay_seconds)
        try:
            await callback()
        except Exception as e:
            logger.error(f"Deferred {name} for room {room_code} failed: {e}", exc_info=True)

    def pending(self, room_code: Optional[str] = None) -> List[str]:
        """尚未完成的排程名稱（"<room>:<name>"）"""
        names = [task.get_name() for task in self._tasks if not task.done()]
        if room_code is None:
            return names
        return [name for name in names if name.startswith(f"{room_code}:")]

    async def shutdown(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Scheduler stopped, cancelled {len(tasks)} pending task(s)")
