"""Per-client fixed-window rate limiting for the API routes.

Usage:
    from concierge.rate_limit import rate_limited

    @app.post("/api/chat", dependencies=[Depends(rate_limited("chat"))])
    async def chat(req: ChatRequest) -> ChatResponse:
        ...

Only routes that declare the dependency are limited. No global middleware is registered.

Presets (defaults from concierge.config.settings):
- chat:   20 requests / 60s
- api:    60 requests / 60s
- strict:  5 requests / 60s

Windows are fixed: the counter for a client resets entirely once its window expires.
Client identity is the first X-Forwarded-For entry, else X-Real-IP, else the shared
"unknown" bucket.

Backends:
- RateLimiter: in-process dict of counters (default).
- RedisRateLimiter: INCR + PEXPIRE counters shared across processes
  (RATE_LIMIT_BACKEND=redis).

Rejections raise RateLimitExceeded; the app turns it into a 429 with Retry-After,
X-RateLimit-* headers and {"error": message, "retryAfter": seconds}. Allowed requests
carry the same X-RateLimit-* headers.
"""
from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import redis.asyncio as aioredis
from fastapi import Request, Response

from concierge.config import settings

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Maximum requests per window.
        remaining: Requests left in the current window.
        reset_at: Epoch milliseconds at which the current window ends.
        retry_after: Seconds until the window resets (positive when rejected, else 0).
    """
    allowed: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at / 1000)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


@dataclass
class RateLimitPolicy:
    max_requests: int
    window_ms: int
    message: str


def _policies() -> Dict[str, RateLimitPolicy]:
    window = settings.RATE_LIMIT_WINDOW_MS
    return {
        "chat": RateLimitPolicy(
            settings.RATE_LIMIT_CHAT_PER_MINUTE,
            window,
            "Too many chat requests. Please wait a moment before trying again.",
        ),
        "api": RateLimitPolicy(settings.RATE_LIMIT_API_PER_MINUTE, window, "Too many requests. Please slow down."),
        "strict": RateLimitPolicy(
            settings.RATE_LIMIT_STRICT_PER_MINUTE,
            window,
            "Rate limit exceeded. Please wait before trying again.",
        ),
    }


RATE_LIMITS: Dict[str, RateLimitPolicy] = _policies()


class RateLimitExceeded(Exception):
    """Raised by the rate_limited dependency when a client is over its window budget."""

    status_code = 429

    def __init__(self, decision: RateLimitDecision, message: str):
        super().__init__(message)
        self.decision = decision
        self.message = message


@dataclass
class _Window:
    count: int
    reset_at: int


def _now_ms() -> int:
    return int(time.time() * 1000)


def _decide(count: int, max_requests: int, reset_at: int, now_ms: int) -> RateLimitDecision:
    if count > max_requests:
        retry_after = max(1, math.ceil((reset_at - now_ms) / 1000))
        return RateLimitDecision(False, max_requests, 0, reset_at, retry_after)
    return RateLimitDecision(True, max_requests, max_requests - count, reset_at, 0)


class RateLimiter:
    """In-process fixed-window counters keyed by client id.

    Args:
        clock: Epoch-milliseconds time source (injectable for tests).
    """

    def __init__(self, clock: Callable[[], int] = _now_ms):
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    async def check(self, client_id: str, max_requests: int, window_ms: int) -> RateLimitDecision:
        now = self._clock()
        window = self._windows.get(client_id)
        if window is None or now >= window.reset_at:
            window = _Window(count=0, reset_at=now + window_ms)
            self._windows[client_id] = window
        window.count += 1
        return _decide(window.count, max_requests, window.reset_at, now)

    def cleanup(self) -> int:
        """Drop expired windows; returns the number removed."""
        now = self._clock()
        expired = [cid for cid, w in self._windows.items() if now >= w.reset_at]
        for cid in expired:
            del self._windows[cid]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        return {"backend": "memory", "activeClients": len(self._windows)}

    def clear(self) -> None:
        self._windows.clear()


class RedisRateLimiter:
    """Fixed-window counters in Redis, shared by every process pointing at REDIS_URL."""

    def __init__(self, client: Optional[aioredis.Redis] = None, key_prefix: str = "concierge:rl"):
        self._client = client
        self.key_prefix = key_prefix

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        return self._client

    async def check(self, client_id: str, max_requests: int, window_ms: int) -> RateLimitDecision:
        key = f"{self.key_prefix}:{window_ms}:{client_id}"
        r = self.client
        count = int(await r.incr(key))
        if count == 1:
            await r.pexpire(key, window_ms)
            ttl_ms = window_ms
        else:
            ttl_ms = int(await r.pttl(key))
            if ttl_ms < 0:
                # Counter lost its expiry; restart the window
                await r.pexpire(key, window_ms)
                ttl_ms = window_ms
        now = _now_ms()
        return _decide(count, max_requests, now + ttl_ms, now)

    def cleanup(self) -> int:
        # Redis expires keys itself
        return 0

    def stats(self) -> Dict[str, Any]:
        return {"backend": "redis", "url": settings.REDIS_URL.split("@")[-1]}

    def clear(self) -> None:
        pass


_limiter: Optional[Union[RateLimiter, RedisRateLimiter]] = None


def get_rate_limiter() -> Union[RateLimiter, RedisRateLimiter]:
    """Return the process-wide limiter for the configured backend."""
    global _limiter
    if _limiter is None:
        if settings.RATE_LIMIT_BACKEND.lower() == "redis":
            _limiter = RedisRateLimiter()
        else:
            _limiter = RateLimiter()
        logger.info("Rate limiter backend=%s", settings.RATE_LIMIT_BACKEND)
    return _limiter


def set_rate_limiter(limiter: Optional[Union[RateLimiter, RedisRateLimiter]]) -> None:
    global _limiter
    _limiter = limiter


def get_client_id(request: Request) -> str:
    """Derive the client identity from proxy headers."""
    if settings.TRUST_X_FORWARDED_FOR:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            first = xff.split(",")[0].strip()
            if first:
                return first
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return "unknown"


def rate_limited(preset: str = "api") -> Callable[..., Any]:
    """Build a FastAPI dependency enforcing a named preset.

    Args:
        preset: One of "chat", "api" or "strict".

    Raises:
        KeyError: If the preset is unknown (at declaration time).
    """
    policy = RATE_LIMITS[preset]

    async def dependency(request: Request, response: Response) -> RateLimitDecision:
        client_id = get_client_id(request)
        # Presets count independently for the same client
        decision = await get_rate_limiter().check(f"{preset}:{client_id}", policy.max_requests, policy.window_ms)
        if not decision.allowed:
            logger.info("Rate limit exceeded preset=%s client=%s retry_after=%s", preset, client_id, decision.retry_after)
            raise RateLimitExceeded(decision, policy.message)
        for name, value in decision.headers().items():
            response.headers[name] = value
        return decision

    return dependency
