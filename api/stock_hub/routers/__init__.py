# stock_hub/routers/__init__.py
