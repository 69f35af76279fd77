import asyncio
import hashlib
import os
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sitebot.config import LLM
from sitebot.core import errors
from sitebot.core.llm import AnswerGenerator, NO_ANSWER
from sitebot.core.rate_limit import RateLimiter
from sitebot.core.retriever import KnowledgeSearch
from sitebot.db.repositories import (
    SiteRepository,
    WidgetSessionRepository,
    ChatMessageRepository,
    ChatRatingRepository,
    UnansweredQuestionRepository,
)

UNANSWERED_PROMPT = (
    "I don't have enough information to answer this question. "
    "Would you like to leave your email so the team can help you?"
)
EMAIL_SAVED_MESSAGE = "Thank you! The team will reach out to you soon."


@dataclass
class ChatTurnRequest:
    session_id: str
    message: str
    user_email: Optional[str] = None


@dataclass
class ChatTurnResult:
    response: str
    response_time_ms: int
    message_id: Optional[str] = None
    sources: List[Dict[str, Optional[str]]] = field(default_factory=list)
    can_provide_email: bool = False
    unanswered_question_id: Optional[str] = None


def hash_ip(ip: str, secret: Optional[str] = None) -> str:
    secret = secret if secret is not None else os.getenv("IP_HASH_SECRET", "default-secret")
    return hashlib.sha256(f"{ip}{secret}".encode("utf-8")).hexdigest()


def domain_allowed(request_domain: str, site_domain: str) -> bool:
    request_domain = (request_domain or "").lower()
    if request_domain == (site_domain or "").lower():
        return True
    return request_domain == "localhost" or request_domain.startswith("localhost:")


class ChatTurnOrchestrator:
    """One widget chat turn: policy checks, retrieval, generation, persistence."""

    def __init__(
        self,
        *,
        sites: SiteRepository,
        sessions: WidgetSessionRepository,
        messages: ChatMessageRepository,
        ratings: ChatRatingRepository,
        unanswered: UnansweredQuestionRepository,
        rate_limiter: RateLimiter,
        search: KnowledgeSearch,
        generator: AnswerGenerator,
        ip_hash_secret: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sites = sites
        self.sessions = sessions
        self.messages = messages
        self.ratings = ratings
        self.unanswered = unanswered
        self.rate_limiter = rate_limiter
        self.search = search
        self.generator = generator
        self.ip_hash_secret = ip_hash_secret
        self._clock = clock

    async def process(self, site_id: str, request: ChatTurnRequest, ip: str,
                      request_domain: str) -> ChatTurnResult:
        started = self._clock()

        site = await asyncio.to_thread(self.sites.find_by_id, site_id)
        if site is None:
            raise errors.site_not_found(site_id)

        if not domain_allowed(request_domain, site.domain):
            raise errors.domain_mismatch(request_domain, site.domain)

        session_check = await self.rate_limiter.check_session(request.session_id, site.max_messages_per_session)
        if not session_check.allowed:
            print(f"[Chat] Session limit hit for {request.session_id}", flush=True)
            raise errors.session_limit(session_check.retry_after)

        ip_check = await self.rate_limiter.check_ip(ip)
        if not ip_check.allowed:
            print(f"[Chat] IP limit hit for site {site_id}", flush=True)
            raise errors.ip_limit(ip_check.retry_after)

        await asyncio.to_thread(
            self.sessions.upsert,
            session_id=request.session_id,
            site_id=site_id,
            ip_address_hash=hash_ip(ip, self.ip_hash_secret),
            user_email=request.user_email,
        )

        query = f"{site.name}: {request.message}"
        result = await asyncio.to_thread(self.search.search, site_id, query, site.similarity_threshold)

        if not result.has_answer:
            return await self._unanswered(site_id, request, ip, result.best_score, started)

        recent = await asyncio.to_thread(
            self.messages.find_by_session, request.session_id, limit=LLM["history_messages"] // 2
        )
        history = [
            turn
            for m in recent
            for turn in ({"role": "user", "content": m.message}, {"role": "assistant", "content": m.response})
        ]
        generated = await asyncio.to_thread(
            self.generator.generate,
            request.message,
            result.chunks,
            site.allow_general_knowledge,
            site.name,
            history,
        )

        if generated.answer.strip().strip('"') == NO_ANSWER:
            return await self._unanswered(site_id, request, ip, result.best_score, started)

        response_time_ms = self._elapsed_ms(started)
        chat_message = await asyncio.to_thread(
            self.messages.create,
            site_id=site_id,
            session_id=request.session_id,
            message=request.message,
            response=generated.answer,
            response_time_ms=response_time_ms,
        )
        await self._consume_budget(request.session_id, ip)

        print(f"[Chat] Answered in {response_time_ms}ms with {len(generated.sources)} sources", flush=True)
        return ChatTurnResult(
            response=generated.answer,
            response_time_ms=response_time_ms,
            message_id=chat_message.id,
            sources=generated.sources,
        )

    async def _unanswered(self, site_id: str, request: ChatTurnRequest, ip: str,
                          best_score: float, started: float) -> ChatTurnResult:
        question = await asyncio.to_thread(
            self.unanswered.create,
            site_id=site_id,
            session_id=request.session_id,
            question=request.message,
            best_match_score=best_score,
            user_email=request.user_email,
        )
        await self._consume_budget(request.session_id, ip)
        print(f"[Chat] No answer for site {site_id} (best score {best_score:.4f})", flush=True)
        return ChatTurnResult(
            response=UNANSWERED_PROMPT,
            response_time_ms=self._elapsed_ms(started),
            can_provide_email=True,
            unanswered_question_id=question.id,
        )

    async def _consume_budget(self, session_id: str, ip: str) -> None:
        await self.rate_limiter.increment_session(session_id)
        await self.rate_limiter.increment_ip(ip)
        await asyncio.to_thread(self.sessions.increment_message_count, session_id)

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)

    def save_email(self, site_id: str, question_id: str, email: str) -> Dict[str, object]:
        question = self.unanswered.find_by_id(question_id)
        if question is None or question.site_id != site_id:
            raise errors.question_not_found(question_id)
        self.unanswered.update_email(question_id, email)
        return {"success": True, "message": EMAIL_SAVED_MESSAGE}

    def rate_response(self, site_id: str, message_id: str, rating: str,
                      feedback: Optional[str] = None) -> Dict[str, object]:
        """Record a thumbs up/down; rating the same message twice is a no-op."""
        if rating not in ("positive", "negative"):
            raise errors.validation_error("rating must be 'positive' or 'negative'")

        chat_message = self.messages.find_by_id(message_id)
        if chat_message is None or chat_message.site_id != site_id:
            raise errors.message_not_found(message_id)

        existing = self.ratings.find_by_message_id(message_id)
        if existing is None:
            self.ratings.create(
                chat_message_id=message_id,
                site_id=site_id,
                session_id=chat_message.session_id,
                rating=rating,
                feedback=feedback,
            )
        return {"success": True}
