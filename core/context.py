"""
GameContext：把 store / feed / scheduler / managers 組在一起

main.py 在 lifespan 裡建立一份，掛在 app.state.context；
API 透過 get_context 這個 dependency 取得。
"""
from dataclasses import dataclass

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from database import Settings
from core.cache import RoomCache
from core.event_applier import EventApplier
from core.feed import ChangeFeed
from core.room_manager import RoomManager
from core.round_manager import RoundManager
from core.scheduler import PhaseScheduler
from core.store import RoomStore


@dataclass
class GameContext:
    settings: Settings
    store: RoomStore
    feed: ChangeFeed
    scheduler: PhaseScheduler
    rooms: RoomManager
    rounds: RoundManager
    events: EventApplier


def build_context(session_factory: sessionmaker, settings: Settings) -> GameContext:
    feed = ChangeFeed()
    cache = RoomCache(
        ttl_seconds=settings.room_cache_ttl_seconds,
        max_entries=settings.room_cache_max_entries
    )
    store = RoomStore(session_factory, feed=feed, cache=cache)
    scheduler = PhaseScheduler()
    rounds = RoundManager(store, scheduler, settings)

    return GameContext(
        settings=settings,
        store=store,
        feed=feed,
        scheduler=scheduler,
        rooms=RoomManager(store, settings),
        rounds=rounds,
        events=EventApplier(store, rounds, settings),
    )


def get_context(request: Request) -> GameContext:
    return request.app.state.context
