"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/v1/auth.py (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

The login limit string comes from Settings, but @limiter.limit() runs at
import time, before any Settings exist. login_limit() is passed as a callable
so slowapi reads the configured value per request; configure_limiter() is
called by the application factory.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import Settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")

_DEFAULT_LOGIN_LIMIT = "10/minute"
_login_limit = _DEFAULT_LOGIN_LIMIT


def configure_limiter(settings: Settings) -> None:
    """Apply rate-limit settings and clear any counters from a previous app."""
    global _login_limit
    _login_limit = settings.login_rate_limit or _DEFAULT_LOGIN_LIMIT
    limiter.enabled = settings.rate_limit_enabled
    limiter.reset()


def login_limit() -> str:
    return _login_limit
