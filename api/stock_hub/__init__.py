# stock_hub/__init__.py
"""Stock Hub - packaging stations + bundle-aware stock reconciliation."""
