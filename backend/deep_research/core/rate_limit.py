"""
Rate Limiting

slowapi limiter shared by the research routes. Starting a run fans out to
every search provider and the reasoning service, so run starts get the
tightest budget. Counters live in Redis when it answers a ping.
"""
from typing import Optional

import redis
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.requests import Request
from starlette.responses import JSONResponse

from deep_research.core.config import settings
from deep_research.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LIMIT = "100/minute"
RUN_START_LIMIT = "5/minute"
RUN_GET_LIMIT = "60/minute"
DOCUMENT_FETCH_LIMIT = "30/minute"


def client_key(request: Request) -> str:
    """First X-Forwarded-For hop when behind a proxy, else the peer address."""
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or get_remote_address(request)


def limiter_storage(host: Optional[str] = None, port: Optional[int] = None) -> str:
    uri = f"redis://{host or settings.REDIS_HOST}:{port or settings.REDIS_PORT}"
    try:
        redis.from_url(uri, socket_connect_timeout=2).ping()
    except (redis.ConnectionError, redis.TimeoutError):
        logger.warning("Rate limiter falling back to in-memory counters")
        return "memory://"
    logger.info("Rate limiter counting in Redis")
    return uri


limiter = Limiter(
    key_func=client_key,
    storage_uri=limiter_storage(),
    default_limits=[DEFAULT_LIMIT],
    strategy="fixed-window"
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limited",
            "detail": f"Too many requests for {request.url.path}: {exc.detail}",
            "retry_after": retry_after
        },
        headers={"Retry-After": str(retry_after)}
    )
