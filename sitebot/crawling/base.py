from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any


@dataclass
class TextChunk:
    content: str
    index: int
    start: int             # offsets into the normalized text
    end: int


@dataclass
class PageResult:
    url: str
    title: str = ""
    content: str = ""
    links: List[str] = field(default_factory=list)
    success: bool = False
    error: Optional[str] = None


@dataclass
class CrawledPage:
    url: str
    title: str
    content: str
    depth: int


@dataclass
class CrawlError:
    url: str
    message: str


@dataclass
class CrawlProgress:
    pages_discovered: int = 0
    pages_crawled: int = 0
    pages_processed: int = 0
    current_url: Optional[str] = None
    errors: List[CrawlError] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "pagesDiscovered": self.pages_discovered,
            "pagesCrawled": self.pages_crawled,
            "pagesProcessed": self.pages_processed,
            "errors": [asdict(e) for e in self.errors],
        }
        if self.current_url:
            data["currentUrl"] = self.current_url
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrawlProgress":
        return cls(
            pages_discovered=int(data.get("pagesDiscovered", 0)),
            pages_crawled=int(data.get("pagesCrawled", 0)),
            pages_processed=int(data.get("pagesProcessed", 0)),
            current_url=data.get("currentUrl"),
            errors=[
                CrawlError(url=e.get("url", ""), message=e.get("message", ""))
                for e in data.get("errors", [])
            ],
        )
