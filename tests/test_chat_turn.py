import asyncio
import threading

import pytest

from sitebot.core.chat_turn import (
    ChatTurnOrchestrator,
    ChatTurnRequest,
    UNANSWERED_PROMPT,
    domain_allowed,
    hash_ip,
)
from sitebot.core.errors import BusinessError
from sitebot.core.rate_limit import RateLimiter
from sitebot.core.retriever import KnowledgeSearch
from conftest import FakeEmbedder, FakeGenerator, FakeVectorStore, match

IP = "203.0.113.7"


def _orchestrator(repos, redis, matches=None, generator=None):
    return ChatTurnOrchestrator(
        sites=repos.sites,
        sessions=repos.sessions,
        messages=repos.messages,
        ratings=repos.ratings,
        unanswered=repos.unanswered,
        rate_limiter=RateLimiter(redis),
        search=KnowledgeSearch(FakeEmbedder(), FakeVectorStore(matches or [])),
        generator=generator or FakeGenerator(),
        ip_hash_secret="pepper",
    )


def _ask(orchestrator, site_id, message="When do you open?", session_id="sess-1", domain="example.com"):
    request = ChatTurnRequest(session_id=session_id, message=message)
    return asyncio.run(orchestrator.process(site_id, request, ip=IP, request_domain=domain))


def test_answered_turn_persists_message_and_consumes_budget(repos, site, redis):
    matches = [
        match(0.9, "https://example.com/hours", "Open 9-5", heading="Hours", site_id=site.id),
        match(0.8, "https://example.com/contact", "Call us", site_id=site.id),
    ]
    generator = FakeGenerator()
    orchestrator = _orchestrator(repos, redis, matches, generator)

    result = _ask(orchestrator, site.id)

    assert result.response == "Our store opens at 9am."
    assert result.message_id is not None
    assert result.sources == [
        {"pageUrl": "https://example.com/hours", "title": "Hours"},
        {"pageUrl": "https://example.com/contact", "title": None},
    ]
    assert not result.can_provide_email

    stored = repos.messages.find_by_id(result.message_id)
    assert stored.message == "When do you open?"
    assert stored.response_time_ms >= 0

    session = repos.sessions.find_by_id("sess-1")
    assert session.messages_count == 1
    assert session.ip_address_hash == hash_ip(IP, "pepper")
    assert asyncio.run(redis.get("ratelimit-session:sess-1")) == "1"
    assert asyncio.run(redis.get(f"ratelimit-ip:{IP}")) == "1"
    assert generator.calls[0]["site_name"] == "Example Store"


def test_search_query_is_prefixed_with_site_name(repos, site, redis):
    orchestrator = _orchestrator(repos, redis)
    _ask(orchestrator, site.id, message="Do you ship abroad?")
    assert orchestrator.search.embedder.queries == ["Example Store: Do you ship abroad?"]


def test_history_is_passed_to_generator(repos, site, redis):
    generator = FakeGenerator()
    orchestrator = _orchestrator(repos, redis, [match(0.9, "https://example.com/a", site_id=site.id)], generator)

    _ask(orchestrator, site.id, message="First question")
    _ask(orchestrator, site.id, message="Follow up")

    assert generator.calls[0]["history"] == []
    assert generator.calls[1]["history"] == [
        {"role": "user", "content": "First question"},
        {"role": "assistant", "content": "Our store opens at 9am."},
    ]


def test_unanswered_question_offers_email_capture(repos, site, redis):
    orchestrator = _orchestrator(repos, redis, [match(0.2, "https://example.com/a", site_id=site.id)])

    result = _ask(orchestrator, site.id, message="Do you sell gift cards?")

    assert result.response == UNANSWERED_PROMPT
    assert result.can_provide_email
    assert result.message_id is None
    question = repos.unanswered.find_by_id(result.unanswered_question_id)
    assert question.question == "Do you sell gift cards?"
    assert question.best_match_score == pytest.approx(0.2)
    assert question.status == "new"
    assert repos.sessions.find_by_id("sess-1").messages_count == 1
    assert asyncio.run(redis.get("ratelimit-session:sess-1")) == "1"
    assert repos.messages.count() == 0


def test_generator_no_answer_sentinel_takes_unanswered_path(repos, site, redis):
    orchestrator = _orchestrator(
        repos, redis, [match(0.9, "https://example.com/a", site_id=site.id)], FakeGenerator(answer="noAnswer")
    )

    result = _ask(orchestrator, site.id)

    assert result.can_provide_email
    assert repos.unanswered.find_by_id(result.unanswered_question_id).best_match_score == pytest.approx(0.9)
    assert repos.messages.count() == 0


def test_sixteenth_message_is_rate_limited(repos, site, redis):
    orchestrator = _orchestrator(repos, redis, [match(0.9, "https://example.com/a", site_id=site.id)])
    for _ in range(15):
        _ask(orchestrator, site.id)
    before = repos.messages.count()

    with pytest.raises(BusinessError) as exc_info:
        _ask(orchestrator, site.id)

    assert exc_info.value.code == "WIDGET_SESSION_LIMIT"
    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after > 0
    assert repos.messages.count() == before == 15


def test_ip_limit_applies_across_sessions(repos, site, redis):
    orchestrator = _orchestrator(repos, redis)
    orchestrator.rate_limiter.ip_limit = 2
    _ask(orchestrator, site.id, session_id="a")
    _ask(orchestrator, site.id, session_id="b")

    with pytest.raises(BusinessError) as exc_info:
        _ask(orchestrator, site.id, session_id="c")
    assert exc_info.value.code == "WIDGET_IP_LIMIT"


def test_domain_mismatch_and_missing_site(repos, site, redis):
    orchestrator = _orchestrator(repos, redis)

    with pytest.raises(BusinessError) as exc_info:
        _ask(orchestrator, site.id, domain="evil.com")
    assert exc_info.value.code == "WIDGET_DOMAIN_MISMATCH"
    assert exc_info.value.status_code == 403

    with pytest.raises(BusinessError) as exc_info:
        _ask(orchestrator, "missing")
    assert exc_info.value.code == "SITE_NOT_FOUND"


def test_domain_allowed():
    assert domain_allowed("example.com", "example.com")
    assert domain_allowed("Example.COM", "example.com")
    assert domain_allowed("localhost", "example.com")
    assert not domain_allowed("www.example.com", "example.com")


def test_save_email_for_unanswered_question(repos, site, redis):
    orchestrator = _orchestrator(repos, redis)
    result = _ask(orchestrator, site.id)

    reply = orchestrator.save_email(site.id, result.unanswered_question_id, "visitor@example.org")

    assert reply["success"]
    assert repos.unanswered.find_by_id(result.unanswered_question_id).user_email == "visitor@example.org"
    with pytest.raises(BusinessError) as exc_info:
        orchestrator.save_email("other-site", result.unanswered_question_id, "visitor@example.org")
    assert exc_info.value.code == "WIDGET_QUESTION_NOT_FOUND"


def test_rating_is_idempotent(repos, site, redis):
    orchestrator = _orchestrator(repos, redis, [match(0.9, "https://example.com/a", site_id=site.id)])
    result = _ask(orchestrator, site.id)

    orchestrator.rate_response(site.id, result.message_id, "positive", "helpful")
    orchestrator.rate_response(site.id, result.message_id, "negative")

    rating = repos.ratings.find_by_message_id(result.message_id)
    assert rating.rating == "positive"
    assert rating.feedback == "helpful"

    with pytest.raises(BusinessError) as exc_info:
        orchestrator.rate_response(site.id, "nope", "positive")
    assert exc_info.value.code == "WIDGET_MESSAGE_NOT_FOUND"


class ThreadRecordingSites:
    def __init__(self, inner):
        self.inner = inner
        self.threads = []

    def find_by_id(self, site_id):
        self.threads.append(threading.current_thread())
        return self.inner.find_by_id(site_id)


def test_repository_calls_run_off_the_event_loop_thread(repos, site, redis):
    orchestrator = _orchestrator(repos, redis, [match(0.9, "https://example.com/a", site_id=site.id)])
    orchestrator.sites = ThreadRecordingSites(repos.sites)

    _ask(orchestrator, site.id)

    assert orchestrator.sites.threads
    assert threading.main_thread() not in orchestrator.sites.threads
