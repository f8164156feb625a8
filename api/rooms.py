"""
Room API Endpoints

職責：
1. 建立房間
2. 查詢房間
3. 修改房間設定（Host）
"""
from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from schemas import RoomCreate, RoomCreatedResponse, RoomSnapshot, SettingsUpdate
from core.context import GameContext, get_context
from core.exceptions import GrannyGameException
from api.errors import http_error

router = APIRouter(prefix="/api/rooms", tags=["rooms"])
logger = logging.getLogger(__name__)


@router.post("", response_model=RoomCreatedResponse, status_code=201)
def create_room(body: RoomCreate, context: GameContext = Depends(get_context)):
    """
    建立房間（Host endpoint）

    流程：
    1. 生成唯一的房間代碼（碰撞時重試）
    2. 建立 Room，Host 自動成為第一位玩家
    3. 返回房間代碼
    """
    try:
        room = context.rooms.create_room(
            body.host_id,
            body.profile,
            settings=body.settings,
            center_location=body.center_location
        )
        return RoomCreatedResponse(room_code=room.code)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to create room: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{code}", response_model=RoomSnapshot)
def get_room(
    code: str,
    use_cache: bool = Query(True),
    context: GameContext = Depends(get_context)
):
    """
    取得房間完整狀態

    參數：
        use_cache: False 時略過快取，直接讀資料庫
    """
    try:
        return context.rooms.get_room(code.upper(), use_cache=use_cache)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to get room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.put("/{code}/settings", response_model=RoomSnapshot)
def update_settings(code: str, body: SettingsUpdate, context: GameContext = Depends(get_context)):
    """修改房間設定（只有 Host，而且只能在 waiting）"""
    try:
        return context.rooms.update_settings(
            code.upper(), body.host_id, body.settings, center_location=body.center_location
        )

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to update settings of room {code}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
