"""
Shared slowapi limiter.

Counters live in Redis when REDIS_URL is set so limits hold across workers;
otherwise they are kept in process memory.
"""

import os

from slowapi import Limiter
from slowapi.util import get_remote_address

DEFAULT_LIMITS = ["200/minute"]

# Balance writes and broadcasts
WRITE_LIMIT = "30/minute"
UPLOAD_LIMIT = "5/hour"

limiter = Limiter(
    key_func=get_remote_address,
    default_limits=DEFAULT_LIMITS,
    storage_uri=os.getenv("REDIS_URL") or "memory://",
)
