from sitebot.crawling.base import TextChunk, PageResult, CrawledPage, CrawlProgress
from sitebot.crawling.chunker import chunk_text

__all__ = ["TextChunk", "PageResult", "CrawledPage", "CrawlProgress", "chunk_text"]
