"""
api/limiter.py -- Shared slowapi rate limiter for the AdBond API.

api/main.py mounts it as middleware; route modules decorate handlers with
@limiter.limit(). Every module must import this one instance: a Limiter per
module would keep separate counters and the limits would never trip.

Keyed by client IP. Registration and login are the public write paths, so
they carry the tightest limits.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
