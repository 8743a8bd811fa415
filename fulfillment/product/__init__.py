"""
Product — 価格参照
"""
