from typing import Optional

from sitebot.config import CACHE, CRAWL
from sitebot.core.upstash_redis import UpstashRedis
from sitebot.crawling.base import CrawlProgress


class ProgressChannel:
    """Latest crawl progress per site, readable by polling clients."""

    def __init__(self, redis: UpstashRedis, ttl_seconds: int = CACHE["progress_ttl_s"]):
        self.redis = redis
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def key(site_id: str) -> str:
        return f"progress:{site_id}"

    async def publish(self, site_id: str, progress: CrawlProgress) -> None:
        await self.redis.set_json(self.key(site_id), progress.to_dict(), ttl_seconds=self.ttl_seconds)

    async def read(self, site_id: str) -> Optional[CrawlProgress]:
        data = await self.redis.get_json(self.key(site_id))
        if data is None:
            return None
        return CrawlProgress.from_dict(data)

    async def clear(self, site_id: str) -> None:
        await self.redis.delete(self.key(site_id))


class CrawlCooldown:
    """Per-site crawl lock: a site may start a crawl once per cooldown window."""

    def __init__(self, redis: UpstashRedis, hours: int = CRAWL["recrawl_cooldown_hours"]):
        self.redis = redis
        self.hours = hours

    @staticmethod
    def key(site_id: str) -> str:
        return f"crawl-cooldown:{site_id}"

    async def can_start(self, site_id: str) -> bool:
        return not await self.redis.exists(self.key(site_id))

    async def record_start(self, site_id: str) -> None:
        await self.redis.set_ex(self.key(site_id), "1", self.hours * 3600)
