"""
命名服務：生成 Room Code 和 Skillcheck / Escape Area 的 id

純計算邏輯，不涉及狀態轉換
"""
import random
import string
import uuid

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


def generate_room_code() -> str:
    """
    生成隨機的 6 位英數房間代碼（方便口頭 / 畫面分享）

    範例：ABC123, X7K2QP

    注意：
    - 不檢查唯一性（由呼叫者負責，碰撞時重試）
    - 36^6 ≈ 21 億種可能，碰撞機率極低
    """
    return ''.join(random.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))


def generate_skillcheck_id(index: int) -> str:
    return f"skillcheck_{index + 1}_{uuid.uuid4().hex[:8]}"


def generate_escape_area_id() -> str:
    return f"escape_area_{uuid.uuid4().hex[:8]}"
