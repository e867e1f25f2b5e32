"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and the auth and
registration routers (to apply per-route limits with @limiter.limit()).

Using a single shared instance ensures all routes share the same in-memory
counter store. If this were instantiated in each module separately, each
module would get its own isolated counter and rate limits would never trigger.

Routes put @router.post() outermost and @limiter.limit() directly above the
def, so FastAPI registers the rate-limited wrapper.

RATE_LIMIT_ENABLED=false turns every @limiter.limit() into a no-op. The test
suite sets it so repeated logins from the TestClient address are not throttled.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)
