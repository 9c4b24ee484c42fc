"""Inbound rate limiting for the upload routes (slowapi).

This throttles callers of our own HTTP API; upstream pacing is handled by
the gateway's RequestQueue.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address
from starlette.requests import Request


def client_key(request: Request) -> str:
    """Key requests by the first X-Forwarded-For hop when behind a proxy."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(key_func=client_key)
