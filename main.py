import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from database import Base, get_settings, make_engine, make_session_factory
from api import rooms, players, rounds, history, websocket
from core.context import build_context

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: 建立資料表和 GameContext（測試會事先放好自己的 context）
    context = getattr(app.state, "context", None)
    if context is None:
        settings = get_settings()
        engine = make_engine(settings.database_url)
        Base.metadata.create_all(bind=engine)
        context = build_context(make_session_factory(engine), settings)
        app.state.context = context

    # 重啟前還在進行的房間，依時間戳重新排程
    await context.rounds.resume_timers()
    yield
    # Shutdown: 取消所有尚未觸發的計時器
    await context.scheduler.shutdown()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Granny IRL API",
        description="Backend API for the real-world hide-and-seek game",
        version="1.0.0",
        lifespan=lifespan
    )

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure this properly in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(rooms.router)
    app.include_router(players.router)
    app.include_router(rounds.router)
    app.include_router(history.router)
    app.include_router(websocket.router)

    @app.get("/")
    def root():
        return {"message": "Granny IRL API", "status": "ok"}

    @app.get("/health")
    def health():
        return {"status": "healthy"}

    return app


logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)

app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
