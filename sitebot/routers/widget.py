import asyncio
from typing import Dict, List, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field

from sitebot.config import CACHE
from sitebot.core import errors
from sitebot.core.cache import cache_get_or_set, make_cache_key
from sitebot.core.chat_turn import ChatTurnOrchestrator, ChatTurnRequest
from sitebot.core.upstash_redis import UpstashRedis
from sitebot.db.repositories import ApiKeyRepository
from sitebot.dependencies import get_api_key_repository, get_chat_orchestrator, get_redis

router = APIRouter(prefix="/widget", tags=["widget"])

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1, max_length=100)
    message: str = Field(min_length=1, max_length=2000)
    user_email: Optional[str] = Field(default=None, alias="userEmail", pattern=EMAIL_PATTERN)


class SourceInfo(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    page_url: str = Field(alias="pageUrl")
    title: Optional[str] = None


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    response: str
    response_time: int = Field(alias="responseTime")
    message_id: Optional[str] = Field(default=None, alias="messageId")
    sources: Optional[List[SourceInfo]] = None
    can_provide_email: Optional[bool] = Field(default=None, alias="canProvideEmail")
    unanswered_question_id: Optional[str] = Field(default=None, alias="unansweredQuestionId")


class EmailRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    question_id: str = Field(alias="questionId", min_length=1)
    email: str = Field(pattern=EMAIL_PATTERN)


class RatingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId", min_length=1)
    rating: str = Field(pattern=r"^(positive|negative)$")
    feedback: Optional[str] = Field(default=None, max_length=2000)


async def require_widget_site(
    x_api_key: Optional[str] = Header(default=None, alias="X-API-Key"),
    redis: UpstashRedis = Depends(get_redis),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
) -> str:
    """Resolve the calling site from its widget API key (cached for a few minutes)."""
    if not x_api_key:
        raise errors.api_key_invalid()

    async def _fetch():
        record = await asyncio.to_thread(api_keys.find_by_key, x_api_key)
        if record is None:
            return None
        return {"siteId": record.site_id, "isActive": record.is_active}

    data = await cache_get_or_set(
        redis=redis,
        key=make_cache_key("apikey", x_api_key),
        fetch=_fetch,
        ttl_seconds=CACHE["api_key_ttl_s"],
    )
    if data is None:
        raise errors.api_key_invalid()
    if not data["isActive"]:
        raise errors.api_key_inactive()
    return data["siteId"]


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
async def chat(
    body: ChatRequest,
    request: Request,
    origin: Optional[str] = Header(default=None),
    site_id: str = Depends(require_widget_site),
    orchestrator: ChatTurnOrchestrator = Depends(get_chat_orchestrator),
):
    if not origin:
        raise errors.validation_error("Origin header is required")
    request_domain = urlparse(origin).hostname or origin

    result = await orchestrator.process(
        site_id,
        ChatTurnRequest(session_id=body.session_id, message=body.message, user_email=body.user_email),
        ip=_client_ip(request),
        request_domain=request_domain,
    )
    return ChatResponse(
        response=result.response,
        response_time=result.response_time_ms,
        message_id=result.message_id,
        sources=[SourceInfo(page_url=s["pageUrl"], title=s.get("title")) for s in result.sources] or None,
        can_provide_email=result.can_provide_email or None,
        unanswered_question_id=result.unanswered_question_id,
    )


@router.post("/unanswered/email")
async def save_unanswered_email(
    body: EmailRequest,
    site_id: str = Depends(require_widget_site),
    orchestrator: ChatTurnOrchestrator = Depends(get_chat_orchestrator),
) -> Dict[str, object]:
    return await asyncio.to_thread(orchestrator.save_email, site_id, body.question_id, body.email)


@router.post("/rating")
async def rate_message(
    body: RatingRequest,
    site_id: str = Depends(require_widget_site),
    orchestrator: ChatTurnOrchestrator = Depends(get_chat_orchestrator),
) -> Dict[str, object]:
    return await asyncio.to_thread(
        orchestrator.rate_response, site_id, body.message_id, body.rating, body.feedback
    )
