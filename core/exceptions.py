"""
自定義異常類別

集中管理所有業務邏輯異常，方便 API 層統一處理

這些都是「驗證錯誤」：同步回報給呼叫者，不會自動重試。
網路 / 資料庫的暫時性錯誤不在這裡，由 EventApplier 的 fallback 處理。
"""


class GrannyGameException(Exception):
    """所有遊戲異常的基類"""
    pass


# ============ Room 相關異常 ============

class RoomNotFound(GrannyGameException):
    """房間不存在"""
    def __init__(self, room_code):
        self.room_code = room_code
        super().__init__(f"Room {room_code} not found")


class CodeGenerationExhausted(GrannyGameException):
    """連續多次產生的房間代碼都已被使用"""
    def __init__(self, attempts):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique room code after {attempts} attempts")


class RoomFull(GrannyGameException):
    """房間人數已達上限"""
    pass


class GameAlreadyStarted(GrannyGameException):
    """房間不接受新玩家 / 設定變更（遊戲已經開始）"""
    pass


class InsufficientPlayers(GrannyGameException):
    """玩家數量不足（至少 2 人，且要比殺手數多至少 1 人）"""
    pass


class MissingCenterLocation(GrannyGameException):
    """Skillcheck 模式需要中心點：沒有釘選位置，Host 也沒有 GPS 位置"""
    pass


# ============ 權限相關異常 ============

class NotHost(GrannyGameException):
    """只有 Host 可以執行此操作"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} is not the host")


class SelfKick(GrannyGameException):
    """Host 不能踢自己"""
    pass


# ============ Player 相關異常 ============

class PlayerNotFound(GrannyGameException):
    """玩家不在房間內"""
    def __init__(self, player_id):
        self.player_id = player_id
        super().__init__(f"Player {player_id} not found in room")

