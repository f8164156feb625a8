"""
Domain exception -> HTTP status

每個 endpoint 仍然自己 try / except（和其他 endpoint 一樣的寫法），
只把對應表集中在這裡。
"""
from fastapi import HTTPException

from core.exceptions import (
    GrannyGameException,
    RoomNotFound,
    PlayerNotFound,
    NotHost,
    GameAlreadyStarted,
    RoomFull,
)

STATUS_CODES = (
    ((RoomNotFound, PlayerNotFound), 404),
    ((NotHost,), 403),
    ((GameAlreadyStarted, RoomFull), 409),
)


def http_error(error: GrannyGameException) -> HTTPException:
    for exception_types, status_code in STATUS_CODES:
        if isinstance(error, exception_types):
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
