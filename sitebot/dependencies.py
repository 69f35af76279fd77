from functools import lru_cache

from sitebot.core.chat_turn import ChatTurnOrchestrator
from sitebot.core.crawl_status import ProgressChannel, CrawlCooldown
from sitebot.core.embedder import Embedder
from sitebot.core.llm import AnswerGenerator
from sitebot.core.rate_limit import RateLimiter
from sitebot.core.retriever import KnowledgeSearch
from sitebot.core.site_admin import Enqueue
from sitebot.core.upstash_redis import UpstashRedis
from sitebot.core.vector_store import VectorStore
from sitebot.db.repositories import (
    SiteRepository,
    ApiKeyRepository,
    KnowledgeChunkRepository,
    WidgetSessionRepository,
    ChatMessageRepository,
    ChatRatingRepository,
    UnansweredQuestionRepository,
)


@lru_cache()
def get_redis() -> UpstashRedis:
    return UpstashRedis()


@lru_cache()
def get_vector_store() -> VectorStore:
    return VectorStore()


@lru_cache()
def get_embedder() -> Embedder:
    return Embedder()


@lru_cache()
def get_site_repository() -> SiteRepository:
    return SiteRepository()


@lru_cache()
def get_api_key_repository() -> ApiKeyRepository:
    return ApiKeyRepository()


@lru_cache()
def get_chunk_repository() -> KnowledgeChunkRepository:
    return KnowledgeChunkRepository()


def get_progress_channel() -> ProgressChannel:
    return ProgressChannel(get_redis())


def get_cooldown() -> CrawlCooldown:
    return CrawlCooldown(get_redis())


def get_enqueue() -> Enqueue:
    from sitebot.jobs.tasks import enqueue_crawl

    return enqueue_crawl


@lru_cache()
def get_chat_orchestrator() -> ChatTurnOrchestrator:
    return ChatTurnOrchestrator(
        sites=get_site_repository(),
        sessions=WidgetSessionRepository(),
        messages=ChatMessageRepository(),
        ratings=ChatRatingRepository(),
        unanswered=UnansweredQuestionRepository(),
        rate_limiter=RateLimiter(get_redis()),
        search=KnowledgeSearch(get_embedder(), get_vector_store()),
        generator=AnswerGenerator(),
    )
