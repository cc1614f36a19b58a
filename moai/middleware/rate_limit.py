"""Fixed-window rate limiting for API routes.

Each tier counts requests per derived key (client IP, plus the user agent
for the general API tier) inside a fixed window. Counters live in a
process-local table, so limits only hold for a single-process deployment.
"""

import math
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from fastapi import Request, Response

from moai.config import RateLimitTier
from moai.utils.logging import RequestLogger

request_logger = RequestLogger(component="rate_limit")


@dataclass
class RateLimitEntry:
    requests: int
    reset_time: float


@dataclass
class RateLimitDecision:
    """Outcome of one rate limit check."""

    allowed: bool
    key: str
    limit: int
    remaining: int
    reset_time: float
    retry_after: int | None = None
    message: str = ""

    @property
    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(int(self.reset_time * 1000)),
        }
        if self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitExceeded(Exception):
    """Raised by route dependencies; rendered as a 429 by the app."""

    def __init__(self, decision: RateLimitDecision):
        super().__init__(decision.message)
        self.decision = decision


class RateLimitStore:
    """Counter table shared by every tier, keyed by tier prefix and client."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self.clock = clock
        self.entries: dict[str, RateLimitEntry] = {}

    def purge_expired(self, now: float) -> None:
        for key in [k for k, entry in self.entries.items() if now > entry.reset_time]:
            del self.entries[key]

    def status(self, key: str) -> dict | None:
        entry = self.entries.get(key)
        if entry is None:
            return None

        return {
            "requests": entry.requests,
            "reset_time": entry.reset_time,
            "remaining_seconds": max(0.0, entry.reset_time - self.clock()),
        }

    def clear(self, key: str) -> None:
        self.entries.pop(key, None)

    def active_limits(self) -> list[dict]:
        now = self.clock()
        return [
            {"key": key, "requests": entry.requests, "reset_time": entry.reset_time}
            for key, entry in self.entries.items()
            if now <= entry.reset_time
        ]

    def reset(self) -> None:
        self.entries.clear()


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


class RateLimiter:
    """One fixed-window tier."""

    def __init__(self, name: str, tier: RateLimitTier, store: RateLimitStore):
        self.name = name
        self.tier = tier
        self.store = store

    def key_for(self, request: Request) -> str:
        key = f"{self.name}_limit:{client_ip(request)}"
        if self.tier.include_user_agent:
            key += ":" + request.headers.get("user-agent", "")[:50]
        return key

    def check(self, key: str) -> RateLimitDecision:
        """Count one request against ``key``."""
        now = self.store.clock()
        self.store.purge_expired(now)

        max_requests = self.tier.max_requests
        entry = self.store.entries.get(key)

        if entry is None or now > entry.reset_time:
            entry = RateLimitEntry(requests=1, reset_time=now + self.tier.window_seconds)
            self.store.entries[key] = entry
            return RateLimitDecision(
                allowed=True,
                key=key,
                limit=max_requests,
                remaining=max_requests - 1,
                reset_time=entry.reset_time,
            )

        if entry.requests >= max_requests:
            return RateLimitDecision(
                allowed=False,
                key=key,
                limit=max_requests,
                remaining=0,
                reset_time=entry.reset_time,
                retry_after=math.ceil(entry.reset_time - now),
                message=self.tier.message,
            )

        entry.requests += 1
        return RateLimitDecision(
            allowed=True,
            key=key,
            limit=max_requests,
            remaining=max(0, max_requests - entry.requests),
            reset_time=entry.reset_time,
        )

    def check_request(self, request: Request) -> RateLimitDecision:
        decision = self.check(self.key_for(request))
        if not decision.allowed:
            request_logger.log_rate_limited(self.name, decision.key, decision.retry_after)
        return decision


class RateLimitRegistry:
    """Limiters for every configured tier over one shared store."""

    def __init__(
        self,
        tiers: dict[str, RateLimitTier],
        clock: Callable[[], float] = time.time,
    ):
        self.store = RateLimitStore(clock)
        self.limiters = {
            name: RateLimiter(name, tier, self.store) for name, tier in tiers.items()
        }

    def __getitem__(self, name: str) -> RateLimiter:
        return self.limiters[name]

    def combine(self, *names: str) -> Callable[[Request], RateLimitDecision]:
        """Check tiers in order; the first rejection wins."""

        def check(request: Request) -> RateLimitDecision:
            decision = None
            for name in names:
                decision = self.limiters[name].check_request(request)
                if not decision.allowed:
                    return decision
            return decision

        return check

    def reset(self) -> None:
        self.store.reset()


def rate_limit(*tiers: str) -> Callable[[Request, Response], Awaitable[None]]:
    """Route dependency enforcing ``tiers`` against the app's registry.

    Passing requests get the X-RateLimit-* headers of the last tier checked.
    """

    async def dependency(request: Request, response: Response) -> None:
        registry: RateLimitRegistry = request.app.state.services.rate_limits
        decision = registry.combine(*tiers)(request)

        if not decision.allowed:
            raise RateLimitExceeded(decision)

        response.headers.update(decision.headers)

    return dependency
