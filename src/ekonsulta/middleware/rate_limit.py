"""Rate limiting middleware: Redis-based fixed window.

Learn: Each IP gets one counter per bucket per window, stored in Redis
under "ekonsulta:rl:{ip}:{bucket}:{window}". Buckets have their own
limits and window lengths:

    health  /api/v1/health            30 per minute
    docs    /api-docs, /openapi.json  20 per 5 minutes
    auth    /api/v1/auth/*            5 per 15 minutes (brute-force guard)
    api     everything else /api/v1   100 per 15 minutes

Responses carry RateLimit-Limit/Remaining/Reset headers. Paths outside
these prefixes (the welcome route) are not limited.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests).
"""

import time
from dataclasses import dataclass
from typing import Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from ekonsulta.cache import get_redis
from ekonsulta.config import Settings

logger = structlog.get_logger()

RATE_LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


@dataclass(frozen=True)
class Bucket:
    name: str
    prefixes: tuple[str, ...]
    limit: int
    window_seconds: int

    def matches(self, path: str) -> bool:
        return any(path.startswith(p) for p in self.prefixes)


def buckets_from_settings(settings: Settings) -> list[Bucket]:
    """Most specific first; the first matching bucket counts the request."""
    return [
        Bucket(
            "health",
            ("/api/v1/health",),
            settings.rate_limit_health_max,
            settings.rate_limit_health_window_seconds,
        ),
        Bucket(
            "docs",
            ("/api-docs", "/openapi.json"),
            settings.rate_limit_docs_max,
            settings.rate_limit_docs_window_seconds,
        ),
        Bucket(
            "auth",
            ("/api/v1/auth",),
            settings.rate_limit_auth_max,
            settings.rate_limit_window_seconds,
        ),
        Bucket(
            "api",
            ("/api/v1",),
            settings.rate_limit_max,
            settings.rate_limit_window_seconds,
        ),
    ]


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per bucket."""

    def __init__(self, app, buckets: list[Bucket]):
        super().__init__(app)
        self.buckets = buckets

    def bucket_for(self, path: str) -> Optional[Bucket]:
        for bucket in self.buckets:
            if bucket.matches(path):
                return bucket
        return None

    async def dispatch(self, request: Request, call_next) -> Response:
        bucket = self.bucket_for(request.url.path)
        if bucket is None:
            return await call_next(request)

        # Skip rate limiting if Redis is unavailable
        try:
            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window = int(now // bucket.window_seconds)
        reset = max(1, int((window + 1) * bucket.window_seconds - now))
        key = f"ekonsulta:rl:{client_ip}:{bucket.name}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, bucket.window_seconds * 2)
        except Exception as e:
            # Redis error: don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        headers = {
            "RateLimit-Limit": str(bucket.limit),
            "RateLimit-Remaining": str(max(0, bucket.limit - count)),
            "RateLimit-Reset": str(reset),
        }

        if count > bucket.limit:
            logger.warning(
                "rate_limit.exceeded",
                ip=client_ip,
                bucket=bucket.name,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=429,
                content={"success": False, "error": RATE_LIMIT_MESSAGE},
                headers={**headers, "Retry-After": str(reset)},
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
