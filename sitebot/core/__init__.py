from sitebot.core.embedder import Embedder
from sitebot.core.vector_store import VectorStore
from sitebot.core.llm import AnswerGenerator
from sitebot.core.retriever import KnowledgeSearch

__all__ = ["Embedder", "VectorStore", "AnswerGenerator", "KnowledgeSearch"]
