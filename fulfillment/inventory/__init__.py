"""
Inventory — 在庫台帳 (StockItem / Reservation)
"""
