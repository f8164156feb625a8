"""
Round API Endpoints

重點：
1. 開始遊戲後，headstart / active / 結束 / 重置都由伺服器的計時器推進
2. 玩家事件（淘汰、skillcheck、逃脫）是 idempotent 的：
   重複送出回傳 noop，不會重複生效
3. check-end 讓任何客戶端都可以觸發一次勝負判斷
"""
from fastapi import APIRouter, Depends, HTTPException

import logging

from schemas import (
    RoomSnapshot,
    EliminationSubmit,
    SkillcheckSubmit,
    EscapeSubmit,
    ActionResponse,
    WinCheckResponse,
    GameResultSnapshot,
)
from core.context import GameContext, get_context
from core.exceptions import GrannyGameException
from api.errors import http_error
from services.history_service import get_game_result

router = APIRouter(prefix="/api/rooms", tags=["rounds"])
logger = logging.getLogger(__name__)


def _action_response(applied: bool) -> ActionResponse:
    return ActionResponse(status="applied" if applied else "noop")


@router.post("/{code}/start", response_model=RoomSnapshot)
async def start_game(code: str, context: GameContext = Depends(get_context)):
    """
    開始遊戲（waiting -> headstart）

    前置條件：
    - 至少 2 位玩家，且至少 killer_count + 1 位
    - Skillcheck 模式時必須有中心點（釘選的位置或 Host 的 GPS）
    """
    try:
        return await context.rounds.start_game(code.upper())

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to start game: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/eliminate", response_model=ActionResponse)
async def eliminate_player(code: str, body: EliminationSubmit, context: GameContext = Depends(get_context)):
    """
    回報玩家被淘汰

    已經被淘汰、已逃脫、或不在回合中時回傳 noop。
    """
    try:
        applied = await context.events.eliminate_player(code.upper(), body.player_id, body.eliminated_by)
        return _action_response(applied)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to eliminate player: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/skillchecks/{skillcheck_id}/complete", response_model=ActionResponse)
async def complete_skillcheck(
    code: str,
    skillcheck_id: str,
    body: SkillcheckSubmit,
    context: GameContext = Depends(get_context)
):
    try:
        applied = await context.events.complete_skillcheck(
            code.upper(), skillcheck_id, body.player_id, debug_bypass=body.debug_bypass
        )
        return _action_response(applied)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to complete skillcheck: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/escape", response_model=ActionResponse)
async def escape(code: str, body: EscapeSubmit, context: GameContext = Depends(get_context)):
    try:
        applied = await context.events.mark_player_escaped(
            code.upper(), body.player_id, debug_bypass=body.debug_bypass
        )
        return _action_response(applied)

    except GrannyGameException as e:
        raise http_error(e)
    except Exception as e:
        logger.error(f"Failed to mark escape: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")


@router.post("/{code}/check-end", response_model=WinCheckResponse)
async def check_game_end(code: str, context: GameContext = Depends(get_context)):
    """觸發一次勝負判斷；返回這次判斷的結果"""
    decision = await context.rounds.check_game_end(code.upper())
    return WinCheckResponse(
        ended=decision.ended,
        winners=decision.winners,
        escape_area_revealed=decision.reveal_escape_area
    )


@router.get("/{code}/result", response_model=GameResultSnapshot)
def get_result(code: str, context: GameContext = Depends(get_context)):
    """取得房間最近一局的結果"""
    try:
        result = get_game_result(code.upper(), context.store)
        if result is None:
            raise HTTPException(status_code=404, detail="No result for this room")
        return result

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get result: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal error")
