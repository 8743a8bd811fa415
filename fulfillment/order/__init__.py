"""
Order — 注文記録
"""
