from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from sitebot.config import RETRIEVAL, RATE_LIMITS
from sitebot.core import site_admin
from sitebot.core.crawl_status import ProgressChannel, CrawlCooldown
from sitebot.core.site_admin import Enqueue
from sitebot.core.vector_store import VectorStore
from sitebot.db.repositories import SiteRepository, ApiKeyRepository, KnowledgeChunkRepository
from sitebot.dependencies import (
    get_api_key_repository,
    get_chunk_repository,
    get_cooldown,
    get_enqueue,
    get_progress_channel,
    get_site_repository,
    get_vector_store,
)

router = APIRouter(prefix="/sites", tags=["sites"])


class CreateSiteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(min_length=1, max_length=2048)
    name: Optional[str] = Field(default=None, max_length=255)
    additional_urls: List[str] = Field(default_factory=list, alias="additionalUrls")
    similarity_threshold: float = Field(
        default=RETRIEVAL["default_similarity_threshold"], alias="similarityThreshold", ge=0.0, le=1.0
    )
    allow_general_knowledge: bool = Field(default=False, alias="allowGeneralKnowledge")
    max_messages_per_session: int = Field(
        default=RATE_LIMITS["session_default_limit"], alias="maxMessagesPerSession", ge=1
    )


@router.post("", status_code=201)
async def create_site(
    body: CreateSiteRequest,
    sites: SiteRepository = Depends(get_site_repository),
    api_keys: ApiKeyRepository = Depends(get_api_key_repository),
    cooldown: CrawlCooldown = Depends(get_cooldown),
    enqueue: Enqueue = Depends(get_enqueue),
):
    return await site_admin.create_site(
        url=body.url,
        name=body.name,
        additional_urls=body.additional_urls,
        sites=sites,
        api_keys=api_keys,
        cooldown=cooldown,
        enqueue=enqueue,
        similarity_threshold=body.similarity_threshold,
        allow_general_knowledge=body.allow_general_knowledge,
        max_messages_per_session=body.max_messages_per_session,
    )


@router.get("/{site_id}/crawl-status")
async def crawl_status(
    site_id: str,
    sites: SiteRepository = Depends(get_site_repository),
    progress: ProgressChannel = Depends(get_progress_channel),
):
    return await site_admin.get_crawl_status(site_id=site_id, sites=sites, progress=progress)


@router.post("/{site_id}/recrawl", status_code=202)
async def recrawl(
    site_id: str,
    sites: SiteRepository = Depends(get_site_repository),
    chunks: KnowledgeChunkRepository = Depends(get_chunk_repository),
    vector_store: VectorStore = Depends(get_vector_store),
    cooldown: CrawlCooldown = Depends(get_cooldown),
    enqueue: Enqueue = Depends(get_enqueue),
):
    return await site_admin.recrawl_site(
        site_id=site_id,
        sites=sites,
        chunks=chunks,
        vector_store=vector_store,
        cooldown=cooldown,
        enqueue=enqueue,
    )


@router.delete("/{site_id}")
async def delete_site(
    site_id: str,
    sites: SiteRepository = Depends(get_site_repository),
    vector_store: VectorStore = Depends(get_vector_store),
    progress: ProgressChannel = Depends(get_progress_channel),
):
    await site_admin.delete_site(site_id=site_id, sites=sites, vector_store=vector_store, progress=progress)
    return {"message": f"Deleted site: {site_id}"}
