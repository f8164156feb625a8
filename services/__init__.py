"""
服務層

這個 package 包含純計算邏輯，不負責狀態轉換：
- NamingService：房間代碼 / 物件 id 生成
- PlacementService：skillcheck / escape area 的隨機座標
- HistoryService：玩家歷史紀錄與統計
"""
