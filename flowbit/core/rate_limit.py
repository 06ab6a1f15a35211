"""
Shared slowapi limiter.

Routes decorate credential endpoints with ``@limiter.limit(...)``; the app
stores the limiter on ``app.state`` and maps RateLimitExceeded to 429.
"""
from slowapi import Limiter
from starlette.requests import Request

from flowbit.core import config


def get_authorization_header(request: Request) -> str:
    """
    Rate limit key: the Authorization header, or the client address for
    anonymous callers.
    """
    auth = request.headers.get("Authorization", "")
    if auth:
        return auth
    return f"anonymous:{request.client.host if request.client else 'unknown'}"


limiter = Limiter(key_func=get_authorization_header, enabled=config.RATE_LIMIT_ENABLED)
