"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware via app.state.limiter) and by
api/routes/v1/auth.py (per-route limits with @limiter.limit()).

Every credential endpoint must share this one instance. A limiter built per
module would keep its own counters and a client could spread its guesses
across endpoints.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
