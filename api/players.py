"""
Player API Endpoints

職責：
1. 玩家加入 / 離開房間
2. Host 踢出玩家
3. 玩家位置更新 / 清除
"""
from fastapi import APIRouter, Depends, HTTPException
import logging

from schemas import (
    PlayerJoin,
    PlayerLeave,
    PlayerKick,
    Location,
    RoomSnapshot,
    ActionResponse,
)
from core.context import GameContext, get_context
from core.exceptions import GrannyGameException
from api.errors import http_error

router = APIRouter(prefix="/api/rooms", tags=["players"])
logger = logging.getLogger(__name__)


@router.post("/{code}/join", response_model=RoomSnapshot)
def join_room(code: str, body: PlayerJoin, context: GameContext = Depends(get_context)):
    """
    加入房間（玩家 endpoint）

    前置條件：
    - 房間必須存在
    - 房間狀態必須是 WAITING（尚未開始遊戲）
    - 房間未滿（同一個玩家重新加入不佔新名額）
    """
    try:
        room = context.rooms.join_room(code.upper(), body.player_id, body.profile)
        if room is None:
            raise HTTPException(status_code=404, detail="Room not found")
        return room

    except HTTPException:
        raise
    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to join room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/leave", status_code=204)
def leave_room(code: str, body: PlayerLeave, context: GameContext = Depends(get_context)):
    """離開房間；Host 離開時房間會被刪除"""
    try:
        context.rooms.leave_room(code.upper(), body.player_id)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to leave room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/kick", response_model=RoomSnapshot)
def kick_player(code: str, body: PlayerKick, context: GameContext = Depends(get_context)):
    try:
        return context.rooms.kick_player(code.upper(), body.host_id, body.target_id)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to kick player: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{code}/players/{player_id}/location", response_model=ActionResponse)
async def update_location(
    code: str,
    player_id: str,
    location: Location,
    context: GameContext = Depends(get_context)
):
    """
    更新玩家 GPS 位置

    只在 headstart / active 時有效，其他時候回傳 noop。
    """
    try:
        applied = await context.events.update_player_location(code.upper(), player_id, location)
        return ActionResponse(status="applied" if applied else "noop")

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to update location: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.delete("/{code}/players/{player_id}/location", response_model=ActionResponse)
def clear_location(code: str, player_id: str, context: GameContext = Depends(get_context)):
    try:
        cleared = context.rooms.clear_player_location(code.upper(), player_id)
        return ActionResponse(status="applied" if cleared else "noop")

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to clear location: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
