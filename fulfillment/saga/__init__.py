"""
Saga — 注文作成 Saga のオーケストレーター
"""
