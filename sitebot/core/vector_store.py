import math
import os
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional

from pymilvus import MilvusClient

from sitebot.config import VECTOR_DB


@dataclass
class VectorRecord:
    id: str
    values: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)   # site_id, page_url, content, heading


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


def _escape(value: str) -> str:
    return value.replace('\\', '\\\\').replace('"', '\\"')


def namespace_filter(site_id: str) -> str:
    return f'namespace == "{_escape(site_id)}"'


class VectorStore:
    """Milvus/Zilliz collection partitioned by site namespace."""

    def __init__(self, client: Optional[MilvusClient] = None):
        if client is None:
            uri = os.getenv("ZILLIZ_URI")
            if not uri:
                raise RuntimeError("ZILLIZ_URI environment variable is not set")
            client = MilvusClient(uri=uri, token=os.getenv("ZILLIZ_TOKEN"))
        self.client = client
        self.collection = VECTOR_DB["collection"]
        self.dimensions = VECTOR_DB["dimensions"]
        self.batch_size = VECTOR_DB["upsert_batch_size"]
        self._create_collection()

    def _create_collection(self):
        if not self.client.has_collection(self.collection):
            self.client.create_collection(
                collection_name=self.collection,
                dimension=self.dimensions,
                metric_type="COSINE",
                id_type="str",
                auto_id=False,
                max_length=256,
            )
        self.client.load_collection(self.collection)

    def _validate(self, record: VectorRecord):
        if len(record.values) != self.dimensions:
            raise ValueError(
                f"Vector {record.id} has dimension {len(record.values)} (expected {self.dimensions})"
            )
        if any(math.isnan(v) or math.isinf(v) for v in record.values):
            raise ValueError(f"Vector {record.id} contains NaN/Inf values")

    def upsert(self, records: List[VectorRecord]):
        """Upsert records in batches; every batch must target a single namespace."""
        for i in range(0, len(records), self.batch_size):
            batch = records[i:i + self.batch_size]
            site_ids = {r.metadata.get("site_id") for r in batch}
            if len(site_ids) != 1:
                raise ValueError("All vectors in batch must have the same siteId")
            site_id = site_ids.pop()
            if not site_id:
                raise ValueError("Vector metadata is missing site_id")

            for record in batch:
                self._validate(record)

            data = [
                {
                    "id": r.id,
                    "vector": r.values,
                    "namespace": site_id,
                    "page_url": r.metadata.get("page_url", ""),
                    "content": (r.metadata.get("content") or "")[:32000],   # Milvus varchar cap
                    "heading": r.metadata.get("heading") or "",
                }
                for r in batch
            ]
            self.client.upsert(collection_name=self.collection, data=data)
            print(f"[Vector] Upserted {len(data)} vectors into namespace {site_id}", flush=True)

        if records:
            self.client.flush(collection_name=self.collection)

    def query(self, vector: List[float], top_k: int, site_id: str) -> List[VectorMatch]:
        """Cosine top-k within one site's namespace, best first."""
        search_results = self.client.search(
            collection_name=self.collection,
            data=[vector],
            limit=top_k,
            filter=namespace_filter(site_id),
            search_params={"metric_type": "COSINE"},
            output_fields=["namespace", "page_url", "content", "heading"],
        )

        matches: List[VectorMatch] = []
        if search_results:
            for hit in search_results[0]:
                entity = hit.get("entity") if isinstance(hit.get("entity"), dict) else {}
                heading = entity.get("heading") or None
                matches.append(VectorMatch(
                    id=str(hit.get("id")),
                    score=float(hit.get("distance", 0.0)),
                    metadata={
                        "site_id": entity.get("namespace", site_id),
                        "page_url": entity.get("page_url", ""),
                        "content": entity.get("content", ""),
                        "heading": heading,
                    },
                ))

        matches.sort(key=lambda m: m.score, reverse=True)
        return matches

    def delete_namespace(self, site_id: str):
        """Delete every vector stored for a site."""
        res = self.client.delete(collection_name=self.collection, filter=namespace_filter(site_id))
        print(f"[Vector] Deleted namespace {site_id}: {res}", flush=True)
