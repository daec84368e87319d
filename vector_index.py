# vector_index.py
"""
Vector index clients.

Two backends share one small interface:

    upsert(records)          -> UpsertResult (mutation_id may be None)
    query(vector, top_k)     -> [VectorMatch, ...] best first

`InMemoryVectorIndex` keeps vectors in process and ranks them with cosine
similarity (handy for a single-node deployment and for tests).
`QdrantVectorIndex` talks to a Qdrant server.
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity
from qdrant_client import QdrantClient, models

from config import Settings
from errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VectorRecord:
    id: str
    vector: Sequence[float]
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, str]


@dataclass(frozen=True)
class UpsertResult:
    count: int
    mutation_id: Optional[str] = None


class InMemoryVectorIndex:
    """Id-keyed vectors held in a dict; upsert overwrites by id."""

    def __init__(self):
        self._records: Dict[str, VectorRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def upsert(self, records: Sequence[VectorRecord]) -> UpsertResult:
        with self._lock:
            for record in records:
                self._records[record.id] = VectorRecord(
                    id=record.id,
                    vector=np.asarray(record.vector, dtype=np.float32),
                    metadata=dict(record.metadata),
                )
        return UpsertResult(count=len(records), mutation_id=uuid.uuid4().hex)

    def get(self, record_id: str) -> Optional[VectorRecord]:
        return self._records.get(record_id)

    def query(self, vector: Sequence[float], top_k: int = 3) -> List[VectorMatch]:
        with self._lock:
            records = list(self._records.values())
        if not records:
            return []

        query_vec = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        matrix = np.vstack([r.vector for r in records])
        sims = cosine_similarity(query_vec, matrix)[0]

        results = [
            VectorMatch(id=r.id, score=float(s), metadata=dict(r.metadata))
            for r, s in zip(records, sims)
        ]
        results.sort(key=lambda m: m.score, reverse=True)
        return results[:max(1, top_k)]


class QdrantVectorIndex:
    """Qdrant collection with cosine distance; point ids derive from the SOP code."""

    def __init__(self, client: QdrantClient, collection: str):
        self.client = client
        self.collection = collection

    @staticmethod
    def point_id(record_id: str) -> str:
        # Qdrant only accepts integers or UUIDs; uuid5 keeps reseeds idempotent
        return str(uuid.uuid5(uuid.NAMESPACE_URL, f"sop:{record_id}"))

    def _ensure_collection(self, dimension: int) -> None:
        if self.client.collection_exists(self.collection):
            return
        logger.info("Creating Qdrant collection %s (dim=%d)", self.collection, dimension)
        self.client.create_collection(
            collection_name=self.collection,
            vectors_config=models.VectorParams(size=dimension, distance=models.Distance.COSINE),
        )

    def upsert(self, records: Sequence[VectorRecord]) -> UpsertResult:
        if not records:
            return UpsertResult(count=0)
        self._ensure_collection(len(records[0].vector))

        points = [
            models.PointStruct(
                id=self.point_id(r.id),
                vector=[float(x) for x in r.vector],
                payload={**r.metadata, "record_id": r.id},
            )
            for r in records
        ]
        result = self.client.upsert(collection_name=self.collection, points=points, wait=True)
        operation_id = getattr(result, "operation_id", None)
        return UpsertResult(
            count=len(points),
            mutation_id=str(operation_id) if operation_id is not None else None,
        )

    def query(self, vector: Sequence[float], top_k: int = 3) -> List[VectorMatch]:
        response = self.client.query_points(
            collection_name=self.collection,
            query=[float(x) for x in vector],
            limit=max(1, top_k),
            with_payload=True,
        )
        matches = []
        for point in response.points:
            payload = dict(point.payload or {})
            record_id = payload.pop("record_id", None) or payload.get("code") or str(point.id)
            matches.append(VectorMatch(id=record_id, score=float(point.score), metadata=payload))
        return matches


def build_vector_index(settings: Settings):
    """Return the configured index client, or None when semantic search is off."""
    if settings.vector_index == "none":
        return None
    if settings.vector_index == "memory":
        return InMemoryVectorIndex()
    if settings.vector_index == "qdrant":
        client = QdrantClient(
            url=settings.qdrant_url,
            api_key=settings.qdrant_api_key or None,
            timeout=int(settings.external_timeout),
        )
        return QdrantVectorIndex(client, settings.qdrant_collection)
    raise ConfigurationError(f"Unknown vector index backend: {settings.vector_index}")
