import json
import math
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from sitebot.core.llm import GeneratedAnswer, unique_sources
from sitebot.core.vector_store import VectorMatch
from sitebot.crawling.base import PageResult
from sitebot.db.database import Base
from sitebot.db import models  # noqa: F401
from sitebot.db.repositories import (
    SiteRepository,
    ApiKeyRepository,
    KnowledgeChunkRepository,
    WidgetSessionRepository,
    ChatMessageRepository,
    ChatRatingRepository,
    UnansweredQuestionRepository,
)


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """In-memory stand-in for UpstashRedis with clock-driven expiry."""

    def __init__(self, clock: FakeClock, configured: bool = True):
        self.clock = clock
        self.configured = configured
        self.fail_writes = False
        self.store: Dict[str, Any] = {}
        self.expires: Dict[str, float] = {}

    def _purge(self, key: str) -> None:
        expires_at = self.expires.get(key)
        if expires_at is not None and self.clock() >= expires_at:
            self.store.pop(key, None)
            self.expires.pop(key, None)

    def _check_writable(self) -> None:
        if self.fail_writes:
            raise ConnectionError("redis unavailable")

    def is_configured(self) -> bool:
        return self.configured

    async def close(self) -> None:
        pass

    async def get(self, key: str) -> Optional[str]:
        self._purge(key)
        value = self.store.get(key)
        return None if value is None else str(value)

    async def get_json(self, key: str) -> Any:
        raw = await self.get(key)
        return None if raw is None else json.loads(raw)

    async def set_ex(self, key: str, value: str, ttl_seconds: int) -> None:
        self._check_writable()
        self.store[key] = value
        self.expires[key] = self.clock() + ttl_seconds

    async def set_json(self, key: str, value: Any, ttl_seconds: int) -> None:
        await self.set_ex(key, json.dumps(value), ttl_seconds)

    async def incr(self, key: str) -> int:
        self._check_writable()
        self._purge(key)
        value = int(self.store.get(key, 0)) + 1
        self.store[key] = value
        return value

    async def expire(self, key: str, ttl_seconds: int) -> None:
        self.expires[key] = self.clock() + ttl_seconds

    async def ttl(self, key: str) -> int:
        self._purge(key)
        if key not in self.store:
            return -2
        if key not in self.expires:
            return -1
        return int(math.ceil(self.expires[key] - self.clock()))

    async def exists(self, key: str) -> bool:
        self._purge(key)
        return key in self.store

    async def delete(self, key: str) -> None:
        self._check_writable()
        self.store.pop(key, None)
        self.expires.pop(key, None)


class FakeEmbedder:
    def __init__(self, dimensions: int = 4, fail: bool = False):
        self.dimensions = dimensions
        self.fail = fail
        self.queries: List[str] = []
        self.documents: List[str] = []

    def embed_query(self, query: str) -> List[float]:
        self.queries.append(query)
        return [0.5] * self.dimensions

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        if self.fail:
            raise RuntimeError("embedding provider down")
        self.documents.extend(texts)
        return [[float(i)] * self.dimensions for i in range(len(texts))]


class FakeVectorStore:
    def __init__(self, matches: Optional[List[VectorMatch]] = None):
        self.matches = matches or []
        self.upserted = []
        self.deleted: List[str] = []
        self.queries = []

    def upsert(self, records) -> None:
        self.upserted.extend(records)

    def query(self, vector, top_k: int, site_id: str) -> List[VectorMatch]:
        self.queries.append((site_id, top_k))
        return sorted(self.matches, key=lambda m: m.score, reverse=True)[:top_k]

    def delete_namespace(self, site_id: str) -> None:
        self.deleted.append(site_id)


class FakeFetcher:
    """Serves canned pages keyed by URL; unknown URLs fail like a 404."""

    def __init__(self, pages: Dict[str, PageResult], clock: Optional[FakeClock] = None,
                 fetch_seconds: float = 0.0):
        self.pages = pages
        self.clock = clock
        self.fetch_seconds = fetch_seconds
        self.fetched: List[str] = []

    async def fetch(self, url: str, timeout_s: float = 30) -> PageResult:
        self.fetched.append(url)
        if self.clock is not None:
            self.clock.advance(self.fetch_seconds)
        page = self.pages.get(url)
        if page is None:
            return PageResult(url=url, success=False, error="HTTP 404")
        return page


class FakeGenerator:
    def __init__(self, answer: str = "Our store opens at 9am."):
        self.answer = answer
        self.calls = []

    def generate(self, question, chunks, allow_general_knowledge, site_name=None, history=None):
        self.calls.append({
            "question": question,
            "chunks": chunks,
            "allow_general_knowledge": allow_general_knowledge,
            "site_name": site_name,
            "history": history,
        })
        return GeneratedAnswer(answer=self.answer, sources=unique_sources(chunks))


def make_page(url: str, content: str, links: Optional[List[str]] = None, title: str = "") -> PageResult:
    return PageResult(url=url, title=title or url, content=content, links=links or [], success=True)


def match(score: float, page_url: str, content: str = "Some content", heading: Optional[str] = None,
          site_id: str = "site-1") -> VectorMatch:
    return VectorMatch(
        id=f"{site_id}-{page_url}-{score}",
        score=score,
        metadata={"site_id": site_id, "page_url": page_url, "content": content, "heading": heading},
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis(clock):
    return FakeRedis(clock)


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def repos(session_factory):
    return SimpleNamespace(
        sites=SiteRepository(session_factory),
        api_keys=ApiKeyRepository(session_factory),
        chunks=KnowledgeChunkRepository(session_factory),
        sessions=WidgetSessionRepository(session_factory),
        messages=ChatMessageRepository(session_factory),
        ratings=ChatRatingRepository(session_factory),
        unanswered=UnansweredQuestionRepository(session_factory),
    )


@pytest.fixture
def site(repos):
    return repos.sites.create(
        url="https://example.com",
        domain="example.com",
        name="Example Store",
        status="active",
        additional_urls=[],
    )
