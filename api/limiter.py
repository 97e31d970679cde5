"""
api/limiter.py -- Shared slowapi rate limiter instance and per-route limits.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The limit strings are read from Settings at request time, so tests and
deployments can tune them through LOGIN_RATE_LIMIT / REFRESH_RATE_LIMIT.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def refresh_limit() -> str:
    return get_settings().refresh_rate_limit
