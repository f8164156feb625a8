from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache, wraps
import logging

from core.exceptions import GrannyGameException

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    database_url: str = "sqlite:///./granny_irl.db"
    log_level: str = "INFO"

    # Tier-1 原子操作的逾時（秒），逾時後改走 fetch-modify-write
    atomic_timeout_seconds: float = 5.0
    elimination_timeout_seconds: float = 6.0

    room_code_max_attempts: int = 10
    reset_delay_seconds: float = 10
    escape_timer_minutes: float = 10
    win_check_grace_seconds: float = 5
    elimination_rate_threshold: float = 0.75
    default_escape_distance_meters: float = 500

    room_cache_ttl_seconds: float = 5
    room_cache_max_entries: int = 256
    feed_poll_interval_seconds: float = 3
    follow_up_delay_seconds: float = 0.1

    model_config = SettingsConfigDict(env_file=".env")


@lru_cache()
def get_settings():
    return Settings()


Base = declarative_base()


def make_engine(database_url: str):
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    # SQLite 需要特殊設定：connect_args={"check_same_thread": False}
    # 計時器與 API 會在不同執行緒存取同一個資料庫
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True
    )

    # SQLite 沒有 SELECT ... FOR UPDATE：
    # 關掉 pysqlite 自己的 BEGIN，改成每個 transaction 都以 BEGIN IMMEDIATE 開始，
    # 讀取 -> 改寫 -> 寫回 因此不會和其他寫入者交錯
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(connection):
        connection.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def transactional(func):
    """
    包住 core.store 裡兩個需要單一 transaction 的寫入：

    - _apply_locked（RoomStore.apply_atomic，Tier-1）：lock_room 拿到的鎖要撐到 commit，
      規則丟出驗證錯誤時 rollback 會順便放掉鎖
    - _finish_round（RoomStore.finish_round）：房間改 finished 和新增 GameResult
      要一起成功或一起失敗，否則會有結束了卻沒有歷史紀錄的回合

    被包住的函式只改 ORM 物件，第一個參數（或關鍵字 db）必須是 Session。
    GrannyGameException rollback 後直接拋出；其他錯誤（包含 SQLAlchemyError）
    記錄 traceback 再拋出，交給 EventApplier 改走 Tier-2 / RoundManager 改走無歷史的結束。
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        # 找出 db session（可能在 args 或 kwargs）
        db = None
        if args and isinstance(args[0], Session):
            db = args[0]
        elif 'db' in kwargs:
            db = kwargs['db']

        if db is None:
            raise ValueError(
                f"@transactional requires 'db: Session' as first argument, "
                f"but got args={args}, kwargs={kwargs}"
            )

        try:
            result = func(*args, **kwargs)
            db.commit()
            return result
        except GrannyGameException:
            # 驗證失敗屬於正常流程，不需要 traceback
            db.rollback()
            raise
        except Exception as e:
            logger.error(f"Transaction failed in {func.__name__}: {e}", exc_info=True)
            db.rollback()
            raise

    return wrapper
