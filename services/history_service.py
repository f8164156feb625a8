"""
Player history service.

Builds per-player game history and aggregate stats from the stored
GameResult rows, so the frontend can render a profile page without
keeping its own records.
"""
from typing import List, Optional

from models import Role, Winners
from schemas import GameResultSnapshot, GameHistoryEntry, PlayerGameStats
from core.store import RoomStore


def _role_won(role: Optional[Role], winners: Winners) -> bool:
    if role == Role.KILLER:
        return winners == Winners.KILLERS
    if role == Role.SURVIVOR:
        return winners == Winners.SURVIVORS
    return False


def calculate_placement(result: GameResultSnapshot, player_id: str) -> int:
    """
    Placement of a player in a finished game (1 is best).

    - Winners share first place.
    - A losing player still alive at the end ranks right after the
      teammates of the same role that were eliminated before them.
    - Eliminated players rank by elimination order: the first one
      out gets the last place.
    """
    player = result.final_players.get(player_id)
    if player is None:
        return len(result.final_players)

    if _role_won(player.role, result.winners):
        return 1

    if player.is_alive:
        eliminated_teammates = [
            uid for uid in result.elimination_order
            if uid in result.final_players and result.final_players[uid].role == player.role
        ]
        return 1 + len(eliminated_teammates)

    order = result.elimination_order
    if player_id not in order:
        return len(result.final_players)
    return len(order) - order.index(player_id) + 1


def _duration_minutes(result: GameResultSnapshot) -> float:
    if result.game_started_at is None:
        return 0.0
    seconds = (result.game_ended_at - result.game_started_at).total_seconds()
    return round(max(0.0, seconds) / 60, 1)


def get_game_result(room_code: str, store: RoomStore) -> Optional[GameResultSnapshot]:
    """Most recent result recorded for a room."""
    return store.latest_result(room_code)


def get_player_game_history(player_id: str, store: RoomStore) -> List[GameHistoryEntry]:
    """
    Return every finished game the player took part in, newest first.
    """
    history: List[GameHistoryEntry] = []

    for result in store.list_results():
        player = result.final_players.get(player_id)
        if player is None:
            continue

        history.append(GameHistoryEntry(
            room_id=result.room_id,
            winners=result.winners,
            game_started_at=result.game_started_at,
            game_ended_at=result.game_ended_at,
            player_role=player.role,
            player_won=_role_won(player.role, result.winners),
            placement=calculate_placement(result, player_id),
            game_duration_minutes=_duration_minutes(result),
        ))

    return history


def get_player_game_stats(player_id: str, store: RoomStore) -> PlayerGameStats:
    history = get_player_game_history(player_id, store)
    if not history:
        return PlayerGameStats()

    wins = [entry for entry in history if entry.player_won]
    losses = [entry for entry in history if not entry.player_won]

    return PlayerGameStats(
        games_played=len(history),
        wins=len(wins),
        losses=len(losses),
        killer_wins=sum(1 for entry in wins if entry.player_role == Role.KILLER),
        survivor_wins=sum(1 for entry in wins if entry.player_role == Role.SURVIVOR),
        avg_placement=round(sum(entry.placement for entry in history) / len(history), 1),
        # a loss that did not end in first place means the player was caught
        total_eliminations=sum(1 for entry in losses if entry.placement > 1),
    )
