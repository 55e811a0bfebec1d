"""FastAPI dependencies: actor identity, scheduler wiring, booking rate limit."""
# ruff: noqa: B008  Depends() in function defaults is standard FastAPI

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cabinet.api.rate_limiter import BookingRateLimiter
from cabinet.config import settings
from cabinet.db.engine import get_session, redis_client
from cabinet.models.enums import ActorRole
from cabinet.scheduling.access import Actor
from cabinet.scheduling.service import AppointmentScheduler
from cabinet.scheduling.store import AppointmentStore

rate_limiter = BookingRateLimiter(
    redis_client,
    limit=settings.rate_limit.booking_limit,
    window=settings.rate_limit.booking_window_seconds,
)


async def get_actor(
    x_user_id: int | None = Header(default=None),
    x_user_role: str | None = Header(default=None),
) -> Actor:
    """Identity forwarded by the authentication gateway.

    The gateway has already verified the token; these headers are trusted.
    """
    if x_user_id is None or not x_user_role:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id / X-User-Role headers",
        )
    try:
        role = ActorRole(x_user_role.strip().lower())
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Unknown role: {x_user_role}",
        ) from None
    return Actor(user_id=x_user_id, role=role)


async def get_scheduler(db: AsyncSession = Depends(get_session)) -> AppointmentScheduler:
    return AppointmentScheduler(AppointmentStore(db))


async def enforce_booking_rate(actor: Actor = Depends(get_actor)) -> Actor:
    """Reject with 429 once the actor exceeds the booking window limit."""
    allowed, retry_after = await rate_limiter.check(actor.user_id)
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking requests",
            headers={"Retry-After": str(retry_after)},
        )
    return actor
