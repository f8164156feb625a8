"""
WebSocket：房間即時狀態

連線後：
1. 先送一次目前的房間狀態
2. 之後每次房間有寫入就推送新的狀態（ChangeFeed）
3. 超過 feed_poll_interval_seconds 沒有推送時自己重新讀一次（輪詢補強），
   只有內容改變才送出
4. 房間被刪除時送出 room_deleted 後關閉

客戶端可以送 {"type": "ping"}，會收到 {"type": "pong"}。
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from schemas import RoomSnapshot

router = APIRouter()
logger = logging.getLogger(__name__)


def _room_message(snapshot: Optional[RoomSnapshot]) -> Dict[str, Any]:
    if snapshot is None:
        return {"type": "room_deleted", "room": None}
    return {"type": "room", "room": snapshot.model_dump(mode="json")}


async def _handle_client_message(websocket: WebSocket, message: Dict[str, Any]) -> None:
    text = message.get("text")
    if not text:
        return
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.info(f"Ignoring invalid JSON from websocket client: {text[:50]}")
        return
    if isinstance(data, dict) and data.get("type") == "ping":
        await websocket.send_json({"type": "pong", "timestamp": data.get("timestamp")})


@router.websocket("/ws/rooms/{code}")
async def room_updates(websocket: WebSocket, code: str):
    """房間狀態推送端點"""
    context = websocket.app.state.context
    code = code.upper()
    await websocket.accept()

    loop = asyncio.get_running_loop()
    updates: "asyncio.Queue[Optional[RoomSnapshot]]" = asyncio.Queue()

    # publish 可能在 worker thread 上呼叫，要切回這個 event loop
    def on_change(snapshot: Optional[RoomSnapshot]) -> None:
        loop.call_soon_threadsafe(updates.put_nowait, snapshot)

    unsubscribe = context.feed.subscribe(code, on_change)
    # 兩個 future 都跨迴圈保留，完成後才換新的
    incoming = asyncio.ensure_future(websocket.receive())
    update = asyncio.ensure_future(updates.get())
    last_sent = None

    try:
        snapshot = await asyncio.to_thread(context.store.get, code, True)
        while True:
            message = _room_message(snapshot)
            if message != last_sent:
                await websocket.send_json(message)
                last_sent = message
            if snapshot is None:
                await websocket.close()
                break

            done, _ = await asyncio.wait(
                {update, incoming},
                timeout=context.settings.feed_poll_interval_seconds,
                return_when=asyncio.FIRST_COMPLETED
            )

            if incoming in done:
                received = incoming.result()
                if received["type"] == "websocket.disconnect":
                    break
                await _handle_client_message(websocket, received)
                incoming = asyncio.ensure_future(websocket.receive())

            if update in done:
                snapshot = update.result()
                update = asyncio.ensure_future(updates.get())
            elif incoming not in done:
                # 沒有推送：輪詢一次
                snapshot = await asyncio.to_thread(context.store.get, code, True)

    except WebSocketDisconnect:
        logger.info(f"Websocket for room {code} disconnected")
    finally:
        incoming.cancel()
        update.cancel()
        unsubscribe()
