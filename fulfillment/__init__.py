"""
Fulfillment — 注文作成 Saga と在庫台帳
"""
