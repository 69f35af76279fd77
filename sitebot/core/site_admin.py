import asyncio
import secrets
import time
from typing import Callable, Dict, List, Optional, Any
from urllib.parse import urlparse

from sitebot.config import RETRIEVAL, RATE_LIMITS
from sitebot.core import errors
from sitebot.core.crawl_status import ProgressChannel, CrawlCooldown
from sitebot.core.vector_store import VectorStore
from sitebot.crawling.base import CrawlProgress
from sitebot.db.models import Site
from sitebot.db.repositories import SiteRepository, ApiKeyRepository, KnowledgeChunkRepository

# enqueue(site_id, urls, job_id)
Enqueue = Callable[[str, List[str], str], None]


def generate_api_key() -> str:
    return f"sb_{secrets.token_hex(24)}"


def parse_site_url(url: str) -> str:
    """Return the lowercase hostname of an http(s) URL or raise CRAWL_INVALID_URL."""
    parsed = urlparse((url or "").strip())
    if parsed.scheme not in ("http", "https") or not parsed.hostname:
        raise errors.crawl_invalid_url(url)
    return parsed.hostname.lower()


async def _start_crawl(*, site: Site, enqueue: Enqueue, job_id: str, sites: SiteRepository,
                       cooldown: CrawlCooldown) -> None:
    urls = [site.url, *(site.additional_urls or [])]
    try:
        await cooldown.record_start(site.id)
    except Exception as e:
        print(f"[WARN] Could not record crawl cooldown for {site.id}: {e}", flush=True)
    enqueue(site.id, urls, job_id)
    await asyncio.to_thread(sites.update_status, site.id, "crawling")
    print(f"[Sites] Enqueued {job_id} with {len(urls)} seed URLs", flush=True)


async def _cooldown_allows(cooldown: CrawlCooldown, site_id: str) -> bool:
    try:
        return await cooldown.can_start(site_id)
    except Exception as e:
        print(f"[WARN] Crawl cooldown check failed for {site_id}, allowing: {e}", flush=True)
        return True


async def create_site(
    *,
    url: str,
    name: Optional[str],
    additional_urls: Optional[List[str]],
    sites: SiteRepository,
    api_keys: ApiKeyRepository,
    cooldown: CrawlCooldown,
    enqueue: Enqueue,
    similarity_threshold: float = RETRIEVAL["default_similarity_threshold"],
    allow_general_knowledge: bool = False,
    max_messages_per_session: int = RATE_LIMITS["session_default_limit"],
) -> Dict[str, Any]:
    domain = parse_site_url(url)
    for extra in additional_urls or []:
        parse_site_url(extra)

    if await asyncio.to_thread(sites.find_by_domain, domain) is not None:
        raise errors.conflict(f"A site for {domain} already exists")

    site = await asyncio.to_thread(
        sites.create,
        url=url.strip(),
        domain=domain,
        name=name or domain,
        status="pending",
        additional_urls=list(additional_urls or []),
        similarity_threshold=similarity_threshold,
        allow_general_knowledge=allow_general_knowledge,
        max_messages_per_session=max_messages_per_session,
    )
    api_key = await asyncio.to_thread(api_keys.create, site_id=site.id, key=generate_api_key())
    await _start_crawl(site=site, enqueue=enqueue, job_id=f"crawl-{site.id}", sites=sites, cooldown=cooldown)

    return {"siteId": site.id, "domain": domain, "status": "crawling", "apiKey": api_key.key}


async def recrawl_site(
    *,
    site_id: str,
    sites: SiteRepository,
    chunks: KnowledgeChunkRepository,
    vector_store: VectorStore,
    cooldown: CrawlCooldown,
    enqueue: Enqueue,
) -> Dict[str, Any]:
    site = await asyncio.to_thread(sites.find_by_id, site_id)
    if site is None:
        raise errors.site_not_found(site_id)
    if site.status == "crawling":
        raise errors.crawl_already_in_progress(site_id)
    if not await _cooldown_allows(cooldown, site_id):
        raise errors.crawl_rate_limited(cooldown.hours)

    await asyncio.to_thread(vector_store.delete_namespace, site_id)
    await asyncio.to_thread(chunks.delete_by_site, site_id)

    job_id = f"crawl-{site_id}-{int(time.time() * 1000)}"
    await _start_crawl(site=site, enqueue=enqueue, job_id=job_id, sites=sites, cooldown=cooldown)
    return {"siteId": site_id, "status": "crawling", "jobId": job_id}


async def delete_site(
    *,
    site_id: str,
    sites: SiteRepository,
    vector_store: VectorStore,
    progress: ProgressChannel,
) -> None:
    if await asyncio.to_thread(sites.find_by_id, site_id) is None:
        raise errors.site_not_found(site_id)

    try:
        await progress.clear(site_id)
    except Exception as e:
        print(f"[WARN] Could not clear crawl progress for {site_id}: {e}", flush=True)
    await asyncio.to_thread(vector_store.delete_namespace, site_id)
    await asyncio.to_thread(sites.delete, site_id)
    print(f"[Sites] Deleted site {site_id}", flush=True)


async def get_crawl_status(
    *,
    site_id: str,
    sites: SiteRepository,
    progress: ProgressChannel,
) -> Dict[str, Any]:
    site = await asyncio.to_thread(sites.find_by_id, site_id)
    if site is None:
        raise errors.site_not_found(site_id)

    try:
        current = await progress.read(site_id) or CrawlProgress()
    except Exception as e:
        print(f"[WARN] Could not read crawl progress for {site_id}: {e}", flush=True)
        current = CrawlProgress()
    return {
        "siteId": site_id,
        "status": site.status,
        "progress": current.to_dict(),
        "errorMessage": site.error_message,
    }
