"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in api/main.py (to mount as middleware) and api/routes/auth.py
(to apply the login limit with @limiter.limit()).

A single shared instance keeps one in-memory counter store for all routes.
Separate instances per module would each count in isolation and the limit
would never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
