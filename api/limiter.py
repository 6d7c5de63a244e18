"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to attach to app.state) and in the route modules
(to apply per-route limits with @limiter.limit()). A single shared instance
means every route shares one counter store.

The counter store is pluggable through RATE_LIMIT_STORAGE_URI: "memory://"
keeps counters in-process (single instance only); "redis://host:6379" shares
them across instances. Counters are keyed by client IP.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

_settings = get_settings()

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=_settings.rate_limit_storage_uri,
    enabled=_settings.rate_limit_enabled,
)

LOGIN_LIMIT = _settings.login_rate_limit
REFRESH_LIMIT = _settings.refresh_rate_limit
