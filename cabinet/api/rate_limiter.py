"""Per-actor throttle on mutating booking requests.

One Redis counter per actor and window (``rate:{user_id}:booking``). The
counter and its TTL are read in a single MULTI so two racing requests
cannot both see a fresh key and leave it without an expiry.

Usage:
    limiter = BookingRateLimiter(redis_client, limit=30, window=60)
    allowed, retry_after = await limiter.check(actor.user_id)
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

KEY_TEMPLATE = "rate:{user_id}:booking"


class BookingRateLimiter:
    def __init__(self, redis: Any, limit: int, window: int) -> None:
        self._redis = redis
        self.limit = limit
        self.window = window

    @staticmethod
    def key_for(user_id: int) -> str:
        return KEY_TEMPLATE.format(user_id=user_id)

    async def check(self, user_id: int) -> tuple[bool, int]:
        """Count one request for ``user_id``.

        Returns ``(allowed, retry_after)`` where ``retry_after`` is the number
        of seconds until the window resets, 0 when the request is allowed.
        Redis being unreachable lets the request through.
        """
        key = self.key_for(user_id)
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.ttl(key)
                count, ttl = await pipe.execute()
            if ttl < 0:
                await self._redis.expire(key, self.window)
                ttl = self.window
        except Exception:
            logger.exception("Booking rate limiter unavailable for user %s", user_id)
            return True, 0

        if count > self.limit:
            logger.info("User %s throttled (%d requests in window)", user_id, count)
            return False, max(ttl, 1)
        return True, 0
