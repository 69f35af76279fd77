"""
Page Fetcher
============
Renders a single URL in headless Chromium (Crawl4AI) and returns its visible
text plus outgoing links.

- Navigation waits for DOMContentLoaded, then for network idle and a stable
  DOM, each with its own bound.
- Links are collected before page chrome (nav/footer/header...) is stripped,
  so navigation menus still feed discovery.
- Failures never raise; they come back as ``PageResult(success=False)``.
"""

import asyncio
from typing import List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from crawl4ai import AsyncWebCrawler, BrowserConfig, CrawlerRunConfig, CacheMode
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from sitebot.config import CRAWL, FETCHER
from sitebot.crawling.base import PageResult

BOT_BLOCKED = "Bot detection - access denied"

_DOM_SIZE_JS = "() => document.body ? document.body.innerHTML.length : 0"


def classify_failure(message: str, status_code: Optional[int] = None) -> str:
    if status_code == 403:
        return BOT_BLOCKED
    if any(sig in (message or "") for sig in FETCHER["bot_block_signatures"]):
        return BOT_BLOCKED
    return message or "Fetch failed"


def extract_page(html: str, base_url: str) -> PageResult:
    """Pull title, absolute links and visible text out of rendered HTML."""
    soup = BeautifulSoup(html or "", "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""

    links: List[str] = []
    seen = set()
    for anchor in soup.select("a[href]"):
        href = (anchor.get("href") or "").strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue
        absolute = urljoin(base_url, href)
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if absolute not in seen:
            seen.add(absolute)
            links.append(absolute)

    for selector in FETCHER["strip_selectors"] + FETCHER["hidden_selectors"]:
        for element in soup.select(selector):
            if not element.decomposed:
                element.decompose()

    root = soup.body or soup
    lines = (line.strip() for line in root.get_text(separator="\n").splitlines())
    content = "\n".join(line for line in lines if line)

    if any(marker in title for marker in FETCHER["challenge_titles"]):
        return PageResult(url=base_url, title=title, links=[], success=False, error=BOT_BLOCKED)

    return PageResult(url=base_url, title=title, content=content, links=links, success=True)


def same_domain_links(links: List[str], base_url: str) -> List[str]:
    """Keep page links on the base hostname, dropping static assets."""
    base_host = urlparse(base_url).hostname
    skip = tuple(FETCHER["skip_extensions"])
    result: List[str] = []
    for link in links:
        parsed = urlparse(link)
        if parsed.scheme not in ("http", "https") or parsed.hostname != base_host:
            continue
        if parsed.path.lower().endswith(skip):
            continue
        result.append(link)
    return result


async def _wait_for_dom_stable(page) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + FETCHER["dom_stable_max_s"]
    last_size = -1
    stable_since = loop.time()
    while loop.time() < deadline:
        size = await page.evaluate(_DOM_SIZE_JS)
        now = loop.time()
        if size != last_size:
            last_size = size
            stable_since = now
        elif now - stable_since >= FETCHER["dom_stable_window_s"]:
            return
        await asyncio.sleep(FETCHER["dom_stable_poll_s"])


async def _settle_page(page, context=None, **kwargs):
    try:
        await page.wait_for_load_state("networkidle", timeout=FETCHER["network_idle_timeout_s"] * 1000)
    except PlaywrightTimeoutError:
        print(f"[Fetch] Network never went idle for {page.url}, continuing", flush=True)
    await _wait_for_dom_stable(page)
    return page


class PageFetcher:
    """One headless browser per crawl job; use as an async context manager."""

    def __init__(self, user_agent: str = FETCHER["user_agent"]):
        self.browser_cfg = BrowserConfig(headless=True, verbose=False, user_agent=user_agent)
        self._crawler: Optional[AsyncWebCrawler] = None

    async def __aenter__(self) -> "PageFetcher":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        if self._crawler is None:
            self._crawler = AsyncWebCrawler(config=self.browser_cfg)
            await self._crawler.start()
            self._crawler.crawler_strategy.set_hook("after_goto", _settle_page)

    async def close(self) -> None:
        if self._crawler is not None:
            await self._crawler.close()
            self._crawler = None

    async def fetch(self, url: str, timeout_s: float = CRAWL["page_timeout_s"]) -> PageResult:
        await self.start()
        run_cfg = CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            wait_until="domcontentloaded",
            page_timeout=int(timeout_s * 1000),
            verbose=False,
        )
        # navigation timeout plus the bounded settle waits
        hard_timeout = timeout_s + FETCHER["network_idle_timeout_s"] + FETCHER["dom_stable_max_s"]

        try:
            result = await asyncio.wait_for(self._crawler.arun(url=url, config=run_cfg), timeout=hard_timeout)
        except asyncio.TimeoutError:
            print(f"[Fetch] ✗ TIMEOUT: {url}", flush=True)
            return PageResult(url=url, success=False, error=f"Timeout after {timeout_s:g}s")
        except Exception as e:
            print(f"[Fetch] ✗ FAILED : {url} ({e})", flush=True)
            return PageResult(url=url, success=False, error=classify_failure(str(e)))

        status_code = getattr(result, "status_code", None)
        if not result.success:
            print(f"[Fetch] ✗ FAILED : {url} ({result.error_message})", flush=True)
            return PageResult(url=url, success=False, error=classify_failure(result.error_message, status_code))
        if status_code and status_code >= 400:
            print(f"[Fetch] ✗ HTTP {status_code}: {url}", flush=True)
            return PageResult(url=url, success=False, error=classify_failure(f"HTTP {status_code}", status_code))

        final_url = getattr(result, "redirected_url", None) or url
        page = extract_page(result.html or "", final_url)
        page.url = url
        if page.success:
            print(f"[Fetch] ✓ {url} ({len(page.content)} chars, {len(page.links)} links)", flush=True)
        else:
            print(f"[Fetch] ✗ BLOCKED: {url}", flush=True)
        return page
