"""
asgi.py -- Application assembly for authgate.

The single import point for ASGI servers. api/main.py owns the app and its
routers; this module only exposes it under a stable name.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
