import asyncio
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Deque, List, Optional, Set, Tuple
from urllib.parse import urlparse, urlunparse

from sitebot.config import CRAWL
from sitebot.core import errors
from sitebot.core.crawl_status import ProgressChannel
from sitebot.core.embedder import Embedder
from sitebot.core.vector_store import VectorStore, VectorRecord
from sitebot.crawling.base import CrawledPage, CrawlError, CrawlProgress
from sitebot.crawling.chunker import chunk_text
from sitebot.crawling.fetcher import PageFetcher, same_domain_links
from sitebot.db.repositories import SiteRepository, KnowledgeChunkRepository


def normalize_url(url: str) -> str:
    """Drop the fragment and one trailing slash; lowercase scheme and host."""
    url = url.strip()
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return url
    path = parsed.path[:-1] if parsed.path.endswith("/") else parsed.path
    return urlunparse((parsed.scheme.lower(), parsed.netloc.lower(), path, parsed.params, parsed.query, ""))


@dataclass
class CrawlLimits:
    max_pages: int = CRAWL["max_pages"]
    max_depth: int = CRAWL["max_depth"]
    page_timeout_s: float = CRAWL["page_timeout_s"]
    total_timeout_s: float = CRAWL["total_timeout_s"]
    min_pages_for_success: int = CRAWL["min_pages_for_success"]
    request_delay_s: float = CRAWL["request_delay_s"]


@dataclass
class CrawlState:
    """BFS bookkeeping for one crawl job."""
    visited: Set[str] = field(default_factory=set)
    discovered: Set[str] = field(default_factory=set)
    queue: Deque[Tuple[str, int]] = field(default_factory=deque)
    pages: List[CrawledPage] = field(default_factory=list)
    errors: List[CrawlError] = field(default_factory=list)
    current_url: Optional[str] = None

    def enqueue(self, url: str, depth: int) -> bool:
        if url in self.discovered:
            return False
        self.discovered.add(url)
        self.queue.append((url, depth))
        return True

    def progress(self) -> CrawlProgress:
        return CrawlProgress(
            pages_discovered=len(self.discovered),
            pages_crawled=len(self.visited),
            pages_processed=len(self.pages),
            current_url=self.current_url,
            errors=list(self.errors),
        )


class CrawlJobProcessor:
    """Runs one crawl job: bounded BFS, then chunk/embed/upsert."""

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        embedder: Embedder,
        vector_store: VectorStore,
        sites: SiteRepository,
        chunks: KnowledgeChunkRepository,
        progress: ProgressChannel,
        limits: Optional[CrawlLimits] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.fetcher = fetcher
        self.embedder = embedder
        self.vector_store = vector_store
        self.sites = sites
        self.chunks = chunks
        self.progress = progress
        self.limits = limits or CrawlLimits()
        self._clock = clock
        self._sleep = sleep

    async def process(self, site_id: str, urls: List[str]) -> CrawlProgress:
        tag = f"[Crawl {site_id}]"
        state = CrawlState()
        try:
            self.sites.update_status(site_id, "crawling")
            await self._crawl(site_id, urls, state, tag)

            processed = len(state.pages)
            if processed < self.limits.min_pages_for_success:
                raise errors.crawl_insufficient_pages(processed, self.limits.min_pages_for_success)

            await self._ingest(site_id, state.pages, tag)
            self.sites.update_status(site_id, "active")

            state.current_url = None
            final = state.progress()
            await self._publish(site_id, final)
            print(f"{tag} Done: {processed} pages processed, {len(state.errors)} errors", flush=True)
            return final

        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            print(f"{tag} [ERROR] Crawl failed: {message}", flush=True)
            self.sites.update_status(site_id, "error", error_message=message)
            state.errors.append(CrawlError(url="crawl", message=message))
            await self._publish(site_id, state.progress())
            raise

    async def _crawl(self, site_id: str, urls: List[str], state: CrawlState, tag: str) -> None:
        limits = self.limits
        started = self._clock()
        deadline = started + limits.total_timeout_s

        for seed in urls:
            state.enqueue(normalize_url(seed), 0)

        while state.queue and len(state.visited) < limits.max_pages:
            if self._clock() > deadline:
                print(f"{tag} [WARN] Total crawl timeout reached after {len(state.visited)} pages", flush=True)
                break

            url, depth = state.queue.popleft()
            if url in state.visited or depth > limits.max_depth:
                continue

            state.visited.add(url)
            state.current_url = url
            print(f"{tag} Fetching ({len(state.visited)}/{limits.max_pages}, depth {depth}): {url}", flush=True)

            result = await self.fetcher.fetch(url, limits.page_timeout_s)
            if result.success and result.content.strip():
                state.pages.append(CrawledPage(url=url, title=result.title, content=result.content, depth=depth))
                if depth < limits.max_depth:
                    for link in same_domain_links(result.links, url):
                        state.enqueue(normalize_url(link), depth + 1)
            else:
                state.errors.append(CrawlError(url=url, message=result.error or "No content extracted"))

            await self._publish(site_id, state.progress())

            if state.queue:
                remaining = deadline - self._clock()
                if remaining > 0:
                    await self._sleep(min(limits.request_delay_s, remaining))

    async def _ingest(self, site_id: str, pages: List[CrawledPage], tag: str) -> None:
        records = []
        for page in pages:
            for chunk in chunk_text(page.content):
                records.append({
                    "site_id": site_id,
                    "page_url": page.url,
                    "content": chunk.content,
                    "heading": page.title or None,
                    "chunk_index": chunk.index,
                    "vector_id": f"{site_id}-{uuid.uuid4()}",
                })

        if not records:
            print(f"{tag} [WARN] No chunks produced from {len(pages)} pages", flush=True)
            return

        print(f"{tag} Embedding {len(records)} chunks from {len(pages)} pages", flush=True)
        embeddings = await asyncio.to_thread(self.embedder.embed_documents, [r["content"] for r in records])

        vectors = [
            VectorRecord(
                id=r["vector_id"],
                values=embedding,
                metadata={
                    "site_id": site_id,
                    "page_url": r["page_url"],
                    "content": r["content"],
                    "heading": r["heading"],
                },
            )
            for r, embedding in zip(records, embeddings)
        ]
        await asyncio.to_thread(self.vector_store.upsert, vectors)
        self.chunks.create_many(records)

    async def _publish(self, site_id: str, progress: CrawlProgress) -> None:
        try:
            await self.progress.publish(site_id, progress)
        except Exception as e:
            print(f"[WARN] Progress update failed for {site_id}: {e}", flush=True)
