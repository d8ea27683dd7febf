"""
api/limiter.py -- Shared slowapi rate limiter for the sign-in endpoints.

api/main.py mounts it as middleware; api/routes/v1/auth.py applies it with
@limiter.limit(signin_limit). One shared instance means one shared in-memory
counter store -- separate instances per module would never trigger.

Counters are per client IP and per process, like the used-token set.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def signin_limit() -> str:
    """Current SIGNIN_RATE_LIMIT, read at request time so tests can override it."""
    return get_settings().signin_rate_limit
