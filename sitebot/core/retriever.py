from dataclasses import dataclass, field
from typing import List, Optional

from sitebot.config import RETRIEVAL
from sitebot.core.embedder import Embedder
from sitebot.core.vector_store import VectorStore


@dataclass
class KnowledgeHit:
    content: str
    page_url: str
    score: float
    heading: Optional[str] = None


@dataclass
class SearchResult:
    has_answer: bool
    chunks: List[KnowledgeHit] = field(default_factory=list)
    best_score: float = 0.0


class KnowledgeSearch:
    def __init__(self, embedder: Embedder, vector_store: VectorStore):
        self.embedder = embedder
        self.vector_store = vector_store
        self.top_k = RETRIEVAL["top_k"]
        self.max_chunks = RETRIEVAL["max_chunks"]

    def search(self, site_id: str, question: str, threshold: float) -> SearchResult:
        """Top-k search in the site namespace, filtered by the site's similarity threshold."""
        query_embedding = self.embedder.embed_query(question)
        matches = self.vector_store.query(query_embedding, top_k=self.top_k, site_id=site_id)

        best_score = max((m.score for m in matches), default=0.0)
        print(f"[Search] site={site_id} matches={len(matches)} best={best_score:.4f} threshold={threshold}", flush=True)

        relevant = [m for m in matches if m.score >= threshold]
        if not relevant:
            return SearchResult(has_answer=False, chunks=[], best_score=best_score)

        # one chunk per page, best first
        seen_pages = set()
        chunks: List[KnowledgeHit] = []
        for m in sorted(relevant, key=lambda m: m.score, reverse=True):
            page_url = m.metadata.get("page_url", "")
            if page_url in seen_pages:
                continue
            seen_pages.add(page_url)
            chunks.append(KnowledgeHit(
                content=m.metadata.get("content", ""),
                page_url=page_url,
                score=m.score,
                heading=m.metadata.get("heading"),
            ))
            if len(chunks) >= self.max_chunks:
                break

        return SearchResult(has_answer=True, chunks=chunks, best_score=best_score)

    @staticmethod
    def build_context(chunks: List[KnowledgeHit]) -> str:
        """Build the numbered context block handed to the answer generator."""
        parts = [
            f"[Source {i} - {chunk.page_url}]\n{chunk.content}"
            for i, chunk in enumerate(chunks, start=1)
        ]
        return "\n\n---\n\n".join(parts)
