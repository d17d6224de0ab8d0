"""Per-IP per-path sliding-window limiter for the login, refresh and logout endpoints."""
import logging
import time
from collections import defaultdict, deque
from fastapi import HTTPException, Request, status
from raptor.core.config import settings
from raptor.utils.helpers import get_client_ip

logger = logging.getLogger(__name__)

# key -> deque[timestamps], per process
_buckets = defaultdict(deque)


def reset_buckets() -> None:
    _buckets.clear()


async def rate_limit(request: Request):
    if not settings.RATE_LIMIT_ENABLED:
        return True

    now = time.monotonic()
    window_start = now - settings.RATE_LIMIT_PERIOD_SECONDS
    key = f"{get_client_ip(request)}:{request.url.path}"
    bucket = _buckets[key]

    while bucket and bucket[0] <= window_start:
        bucket.popleft()

    if len(bucket) >= settings.RATE_LIMIT_REQUESTS:
        logger.warning(f"Rate limit exceeded for {key}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please slow down.",
        )

    bucket.append(now)
    return True
