"""
Rate Limiting Middleware

Per-tenant token bucket stored in Redis. The bucket key comes from the
TenantContext that TenantMiddleware populated, so this middleware must be
added before it (and therefore run after it). Anonymous requests carry no
tenant and are not limited here.

PRODUCTION NOTES:
- When Redis is unreachable the limiter lets requests through.
- Disabled entirely with RATE_LIMIT_ENABLED=false.
"""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse
from typing import Optional, Tuple
import math
import time
import logging

import redis

from app.config import get_settings
from app.utils.logging import log_security_event

logger = logging.getLogger(__name__)

EXCLUDED_PREFIXES = ("/docs", "/redoc", "/openapi.json", "/api/health")
RATE_LIMIT_MESSAGE = "Rate limit exceeded. Please try again later."


class TenantRateLimiter:
    """
    Token bucket per tenant.

    The bucket holds at most `burst` tokens and refills at
    `rate_per_minute / 60` tokens per second. Each bucket is one Redis hash
    with `tokens` and `updated` fields that expires once it would be full
    again.
    """

    def __init__(self, redis_client, rate_per_minute: int, burst: int):
        self.redis = redis_client
        self.burst = burst
        self.refill_per_second = rate_per_minute / 60.0
        self.ttl = max(1, math.ceil(burst / self.refill_per_second))

    @staticmethod
    def key_for(tenant_id: str) -> str:
        return f"rate_limit:{tenant_id}"

    def consume(self, tenant_id: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Take one token. Returns (allowed, retry_after_seconds).

        Runs as WATCH/MULTI/EXEC; redis-py retries the read when another
        request spends from the same bucket in between.
        """
        key = self.key_for(tenant_id)

        def spend(pipe) -> Tuple[bool, int]:
            current = time.time() if now is None else now
            bucket = pipe.hgetall(key)
            if bucket:
                elapsed = max(0.0, current - float(bucket["updated"]))
                tokens = min(self.burst, float(bucket["tokens"]) + elapsed * self.refill_per_second)
            else:
                tokens = float(self.burst)

            if tokens < 1:
                return False, math.ceil((1 - tokens) / self.refill_per_second)

            pipe.multi()
            pipe.hset(key, mapping={"tokens": tokens - 1, "updated": current})
            pipe.expire(key, self.ttl)
            return True, 0

        return self.redis.transaction(spend, key, value_from_callable=True)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Rejects a tenant's requests with 429 once its bucket is empty."""

    def __init__(self, app, redis_client=None):
        super().__init__(app)
        settings = get_settings()
        self.limiter: Optional[TenantRateLimiter] = None

        if not settings.RATE_LIMIT_ENABLED:
            return

        if redis_client is None:
            try:
                redis_client = redis.from_url(
                    settings.REDIS_URL,
                    decode_responses=True,
                    socket_connect_timeout=5,
                )
                redis_client.ping()
                logger.info("Redis connection established for rate limiting")
            except redis.RedisError as e:
                logger.error(f"Redis connection failed, rate limiting disabled: {e}")
                return

        self.limiter = TenantRateLimiter(
            redis_client,
            rate_per_minute=settings.RATE_LIMIT_PER_MINUTE,
            burst=settings.RATE_LIMIT_BURST,
        )

    async def dispatch(self, request: Request, call_next):
        if self.limiter is None or request.url.path.startswith(EXCLUDED_PREFIXES):
            return await call_next(request)

        context = getattr(request.state, "tenant_context", None)
        if context is None or not context.is_set:
            return await call_next(request)

        try:
            allowed, retry_after = self.limiter.consume(context.tenant_id)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return await call_next(request)

        if allowed:
            return await call_next(request)

        log_security_event(
            "rate_limit_exceeded",
            {"tenant_id": context.tenant_id, "path": request.url.path},
            logger,
        )
        return JSONResponse(
            status_code=429,
            content={"status_code": 429, "message": RATE_LIMIT_MESSAGE},
            headers={"Retry-After": str(retry_after)},
        )
