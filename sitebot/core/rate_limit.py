from dataclasses import dataclass
from typing import Optional

from sitebot.config import RATE_LIMITS
from sitebot.core.upstash_redis import UpstashRedis


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: Optional[int] = None      # seconds
    limit_type: Optional[str] = None       # "session" | "ip"


class Counter:
    """TTL-bounded integer counter; the window starts at the first increment."""

    def __init__(self, redis: UpstashRedis, prefix: str, ttl_seconds: int):
        self.redis = redis
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def key(self, ident: str) -> str:
        return f"{self.prefix}:{ident}"

    async def count(self, ident: str) -> int:
        raw = await self.redis.get(self.key(ident))
        return int(raw) if raw is not None else 0

    async def increment(self, ident: str) -> int:
        key = self.key(ident)
        count = await self.redis.incr(key)
        if count == 1:
            await self.redis.expire(key, self.ttl_seconds)
        return count

    async def retry_after(self, ident: str) -> int:
        ttl = await self.redis.ttl(self.key(ident))
        return ttl if ttl > 0 else self.ttl_seconds


class RateLimiter:
    def __init__(
        self,
        redis: UpstashRedis,
        *,
        session_ttl_seconds: int = RATE_LIMITS["session_ttl_s"],
        ip_limit: int = RATE_LIMITS["ip_limit"],
        ip_ttl_seconds: int = RATE_LIMITS["ip_ttl_s"],
        enabled: bool = True,
    ):
        self.redis = redis
        self.sessions = Counter(redis, "ratelimit-session", session_ttl_seconds)
        self.ips = Counter(redis, "ratelimit-ip", ip_ttl_seconds)
        self.ip_limit = ip_limit
        self.enabled = enabled

    def _active(self) -> bool:
        if not self.enabled or not self.redis.is_configured():
            return False
        return True

    async def _check(self, counter: Counter, ident: str, limit: int, limit_type: str) -> RateLimitResult:
        if not self._active():
            return RateLimitResult(allowed=True, remaining=limit)

        try:
            count = await counter.count(ident)
            if count >= limit:
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    retry_after=await counter.retry_after(ident),
                    limit_type=limit_type,
                )
        except Exception as e:
            print(f"[WARN] Rate limit check failed for {limit_type}: {e}", flush=True)
            return RateLimitResult(allowed=True, remaining=limit)

        return RateLimitResult(allowed=True, remaining=limit - count)

    async def check_session(self, session_id: str, limit: Optional[int] = None) -> RateLimitResult:
        limit = limit or RATE_LIMITS["session_default_limit"]
        return await self._check(self.sessions, session_id, limit, "session")

    async def check_ip(self, ip: str) -> RateLimitResult:
        return await self._check(self.ips, ip, self.ip_limit, "ip")

    async def _increment(self, counter: Counter, ident: str) -> None:
        if not self._active():
            return
        try:
            await counter.increment(ident)
        except Exception as e:
            print(f"[WARN] Rate limit increment failed for {counter.prefix}: {e}", flush=True)

    async def increment_session(self, session_id: str) -> None:
        await self._increment(self.sessions, session_id)

    async def increment_ip(self, ip: str) -> None:
        await self._increment(self.ips, ip)
