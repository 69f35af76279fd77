import os
import time
from typing import Callable, List, Optional

import httpx

from sitebot.config import EMBEDDING
from sitebot.core.retry import with_retry


class EmbeddingError(RuntimeError):
    pass


class Embedder:
    def __init__(
        self,
        api_key: Optional[str] = None,
        http: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._api_key = api_key or os.getenv("JINA_API_KEY")
        if not self._api_key:
            raise RuntimeError("Missing JINA_API_KEY environment variable")

        self._endpoint = os.getenv("JINA_EMBEDDINGS_URL", "https://api.jina.ai/v1/embeddings")
        self._http = http or httpx.Client(timeout=httpx.Timeout(60.0, connect=20.0))
        self._sleep = sleep
        self.model = EMBEDDING["model"]
        self.task_doc = EMBEDDING["task_doc"]
        self.task_query = EMBEDDING["task_query"]
        self.batch_size = EMBEDDING["batch_size"]
        self.batch_delay_s = EMBEDDING["batch_delay_s"]
        self.dimensions = EMBEDDING["dimensions"]

    def _request_batch(self, batch: List[str], task: str) -> List[List[float]]:
        payload = {
            "model": self.model,
            "input": batch,
            "task": task,
            "dimensions": self.dimensions,
            "embedding_type": "float",
        }
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

        resp = self._http.post(self._endpoint, headers=headers, json=payload)
        resp.raise_for_status()

        body = resp.json()
        data = sorted(body.get("data", []), key=lambda item: item.get("index", 0))
        embeddings: List[List[float]] = []
        for item in data:
            vec = item.get("embedding")
            if not isinstance(vec, list):
                raise EmbeddingError("Unexpected Jina embeddings response format")
            embeddings.append(vec)

        if len(embeddings) != len(batch):
            raise EmbeddingError(
                f"Jina returned {len(embeddings)} embeddings for {len(batch)} inputs"
            )
        return embeddings

    def _embed_batch(self, batch: List[str], task: str) -> List[List[float]]:
        return with_retry(
            lambda: self._request_batch(batch, task),
            max_attempts=EMBEDDING["retry_attempts"],
            base_delay_s=EMBEDDING["retry_base_delay_s"],
            retry_on=(httpx.HTTPError, EmbeddingError),
            sleep=self._sleep,
            label="embed batch",
        )

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        """Embed a list of documents in batches, preserving input order."""
        all_embeddings: List[List[float]] = []

        for i in range(0, len(texts), self.batch_size):
            batch = texts[i:i + self.batch_size]
            print(f"[Embed] Sending batch {i // self.batch_size + 1}: {len(batch)} chunks", flush=True)
            all_embeddings.extend(self._embed_batch(batch, self.task_doc))

            if i + self.batch_size < len(texts):
                self._sleep(self.batch_delay_s)

        return all_embeddings

    def embed_query(self, query: str) -> List[float]:
        """Embed a single query."""
        embeddings = self._embed_batch([query], self.task_query)
        return embeddings[0]
