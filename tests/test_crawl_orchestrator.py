import asyncio

import pytest

from sitebot.core.crawl_status import ProgressChannel
from sitebot.core.errors import BusinessError
from sitebot.crawling.base import PageResult
from sitebot.crawling.fetcher import BOT_BLOCKED
from sitebot.crawling.orchestrator import CrawlJobProcessor, CrawlLimits, normalize_url
from conftest import FakeEmbedder, FakeFetcher, FakeVectorStore, make_page

ROOT = "https://example.com"
BODY = "Example sells handmade ceramics. Orders ship within two business days. " * 3


def _processor(fetcher, repos, redis, clock, embedder=None, vector_store=None, **limits):
    async def fake_sleep(seconds):
        clock.advance(seconds)

    return CrawlJobProcessor(
        fetcher=fetcher,
        embedder=embedder or FakeEmbedder(),
        vector_store=vector_store or FakeVectorStore(),
        sites=repos.sites,
        chunks=repos.chunks,
        progress=ProgressChannel(redis),
        limits=CrawlLimits(**limits),
        clock=clock,
        sleep=fake_sleep,
    )


def test_normalize_url():
    assert normalize_url("https://Example.com/") == "https://example.com"
    assert normalize_url("https://example.com/a/#top") == "https://example.com/a"
    assert normalize_url("https://example.com/a?x=1#frag") == "https://example.com/a?x=1"


def test_successful_crawl_indexes_pages_and_activates_site(repos, site, redis, clock):
    pages = {
        ROOT: make_page(ROOT, BODY, links=[f"{ROOT}/a", f"{ROOT}/b/", f"{ROOT}/c#team", "https://other.com/x"]),
        f"{ROOT}/a": make_page(f"{ROOT}/a", BODY, links=[ROOT, f"{ROOT}/b"]),
        f"{ROOT}/b": make_page(f"{ROOT}/b", BODY, links=[f"{ROOT}/a"]),
        f"{ROOT}/c": make_page(f"{ROOT}/c", BODY, title="Team"),
    }
    fetcher = FakeFetcher(pages)
    vector_store = FakeVectorStore()
    processor = _processor(fetcher, repos, redis, clock, vector_store=vector_store, max_depth=1)

    progress = asyncio.run(processor.process(site.id, [ROOT]))

    assert progress.pages_crawled == 4
    assert progress.pages_processed == 4
    assert progress.errors == []
    assert sorted(fetcher.fetched) == sorted(pages)
    assert len(fetcher.fetched) == len(set(fetcher.fetched))

    updated = repos.sites.find_by_id(site.id)
    assert updated.status == "active"
    assert updated.last_crawled_at is not None
    assert updated.error_message is None

    assert len(vector_store.upserted) == repos.chunks.count_by_site(site.id) > 0
    assert {v.metadata["site_id"] for v in vector_store.upserted} == {site.id}
    assert all(v.id.startswith(f"{site.id}-") for v in vector_store.upserted)

    stored = asyncio.run(redis.get_json(f"progress:{site.id}"))
    assert stored["pagesProcessed"] == 4


def test_all_pages_blocked_marks_site_as_error(repos, site, redis, clock):
    blocked = PageResult(url=ROOT, success=False, error=BOT_BLOCKED)
    fetcher = FakeFetcher({ROOT: blocked, f"{ROOT}/about": blocked})
    vector_store = FakeVectorStore()
    processor = _processor(fetcher, repos, redis, clock, vector_store=vector_store)

    with pytest.raises(BusinessError) as exc_info:
        asyncio.run(processor.process(site.id, [ROOT, f"{ROOT}/about"]))

    assert exc_info.value.code == "CRAWL_INSUFFICIENT_PAGES"
    updated = repos.sites.find_by_id(site.id)
    assert updated.status == "error"
    assert "0/1" in updated.error_message
    assert vector_store.upserted == []

    stored = asyncio.run(redis.get_json(f"progress:{site.id}"))
    messages = [e["message"] for e in stored["errors"]]
    assert messages.count(BOT_BLOCKED) == 2
    assert stored["errors"][-1]["url"] == "crawl"


def test_page_budget_caps_visited_pages(repos, site, redis, clock):
    pages = {
        f"{ROOT}/p{i}": make_page(f"{ROOT}/p{i}", BODY, links=[f"{ROOT}/p{j}" for j in range(20)])
        for i in range(20)
    }
    fetcher = FakeFetcher(pages)
    processor = _processor(fetcher, repos, redis, clock, max_pages=3)

    progress = asyncio.run(processor.process(site.id, [f"{ROOT}/p0"]))

    assert len(fetcher.fetched) == 3
    assert progress.pages_crawled == 3


def test_depth_budget_stops_link_following(repos, site, redis, clock):
    pages = {
        ROOT: make_page(ROOT, BODY, links=[f"{ROOT}/d1"]),
        f"{ROOT}/d1": make_page(f"{ROOT}/d1", BODY, links=[f"{ROOT}/d2"]),
        f"{ROOT}/d2": make_page(f"{ROOT}/d2", BODY, links=[f"{ROOT}/d3"]),
        f"{ROOT}/d3": make_page(f"{ROOT}/d3", BODY),
    }
    fetcher = FakeFetcher(pages)
    processor = _processor(fetcher, repos, redis, clock, max_depth=2)

    asyncio.run(processor.process(site.id, [ROOT]))

    assert fetcher.fetched == [ROOT, f"{ROOT}/d1", f"{ROOT}/d2"]


def test_wall_clock_budget_is_respected(repos, site, redis, clock):
    pages = {
        f"{ROOT}/p{i}": make_page(f"{ROOT}/p{i}", BODY, links=[f"{ROOT}/p{i + 1}"])
        for i in range(10)
    }
    fetcher = FakeFetcher(pages, clock=clock, fetch_seconds=100)
    processor = _processor(fetcher, repos, redis, clock, total_timeout_s=250, max_depth=20)
    started = clock()

    asyncio.run(processor.process(site.id, [f"{ROOT}/p0"]))

    assert len(fetcher.fetched) == 3
    assert clock() - started <= 250 + 100


def test_polite_delay_between_fetches(repos, site, redis, clock):
    pages = {
        ROOT: make_page(ROOT, BODY, links=[f"{ROOT}/a"]),
        f"{ROOT}/a": make_page(f"{ROOT}/a", BODY),
    }
    slept = []

    async def record_sleep(seconds):
        slept.append(seconds)

    processor = _processor(FakeFetcher(pages), repos, redis, clock)
    processor._sleep = record_sleep

    asyncio.run(processor.process(site.id, [ROOT]))

    assert slept == [1.0]


def test_progress_write_failures_do_not_fail_the_crawl(repos, site, redis, clock):
    redis.fail_writes = True
    fetcher = FakeFetcher({ROOT: make_page(ROOT, BODY)})
    processor = _processor(fetcher, repos, redis, clock)

    progress = asyncio.run(processor.process(site.id, [ROOT]))

    assert progress.pages_processed == 1
    assert repos.sites.find_by_id(site.id).status == "active"


def test_embedding_failure_marks_site_as_error(repos, site, redis, clock):
    fetcher = FakeFetcher({ROOT: make_page(ROOT, BODY)})
    processor = _processor(fetcher, repos, redis, clock, embedder=FakeEmbedder(fail=True))

    with pytest.raises(RuntimeError):
        asyncio.run(processor.process(site.id, [ROOT]))

    updated = repos.sites.find_by_id(site.id)
    assert updated.status == "error"
    assert updated.error_message == "embedding provider down"
    assert repos.chunks.count_by_site(site.id) == 0
