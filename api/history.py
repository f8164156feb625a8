"""
Player history API Endpoints

以玩家 id 查詢：目前所在的房間、過去的對局、統計
"""
from typing import List

from fastapi import APIRouter, Depends, HTTPException
import logging

from schemas import RoomSnapshot, GameHistoryEntry, PlayerGameStats
from core.context import GameContext, get_context
from services.history_service import get_player_game_history, get_player_game_stats

router = APIRouter(prefix="/api/players", tags=["history"])
logger = logging.getLogger(__name__)


@router.get("/{player_id}/rooms", response_model=List[RoomSnapshot])
def get_current_rooms(player_id: str, context: GameContext = Depends(get_context)):
    try:
        return context.rooms.get_current_user_rooms(player_id)

    except Exception as e:
        logger.error(f"Failed to list rooms of {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{player_id}/history", response_model=List[GameHistoryEntry])
def get_history(player_id: str, context: GameContext = Depends(get_context)):
    """玩家參與過的對局（新的在前）"""
    try:
        return get_player_game_history(player_id, context.store)

    except Exception as e:
        logger.error(f"Failed to get history of {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.get("/{player_id}/stats", response_model=PlayerGameStats)
def get_stats(player_id: str, context: GameContext = Depends(get_context)):
    try:
        return get_player_game_stats(player_id, context.store)

    except Exception as e:
        logger.error(f"Failed to get stats of {player_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
