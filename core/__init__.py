"""
核心業務邏輯層

這個 package 包含所有核心業務邏輯，包括：
- Rules：純函式的遊戲規則（RoomSnapshot -> RoomSnapshot）
- Store：房間的持久化、條件式更新、快取、變更通知
- Manager：管理 Room 成員與 Round 階段轉換
- Scheduler：延遲的階段轉換（headstart 結束、回合期限、逃脫計時、重置）
- Win policy：勝負判斷策略
"""
