import asyncio
from typing import List

from celery import Task

from sitebot.core.crawl_status import ProgressChannel
from sitebot.core.embedder import Embedder
from sitebot.core.upstash_redis import UpstashRedis
from sitebot.core.vector_store import VectorStore
from sitebot.crawling.fetcher import PageFetcher
from sitebot.crawling.orchestrator import CrawlJobProcessor
from sitebot.db.database import init_db
from sitebot.db.repositories import SiteRepository, KnowledgeChunkRepository
from sitebot.jobs.celery_app import celery_app


async def run_crawl(site_id: str, urls: List[str]) -> dict:
    redis = UpstashRedis()
    try:
        async with PageFetcher() as fetcher:
            processor = CrawlJobProcessor(
                fetcher=fetcher,
                embedder=Embedder(),
                vector_store=VectorStore(),
                sites=SiteRepository(),
                chunks=KnowledgeChunkRepository(),
                progress=ProgressChannel(redis),
            )
            progress = await processor.process(site_id, urls)
            return progress.to_dict()
    finally:
        await redis.close()


@celery_app.task(bind=True, name="sitebot.crawl_site", max_retries=0, acks_late=False)
def crawl_site(self: Task, site_id: str, urls: List[str]) -> dict:
    print(f"[Worker] Job {self.request.id} started for site {site_id} ({len(urls)} seeds)", flush=True)
    init_db()
    result = asyncio.run(run_crawl(site_id, urls))
    print(f"[Worker] Job {self.request.id} completed: {result['pagesProcessed']} pages", flush=True)
    return result


def enqueue_crawl(site_id: str, urls: List[str], job_id: str) -> None:
    crawl_site.apply_async(args=[site_id, urls], task_id=job_id)
