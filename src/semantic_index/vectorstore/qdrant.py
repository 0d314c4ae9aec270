"""Vector store adapter over Qdrant (server, embedded on-disk, or in-memory)."""

from __future__ import annotations

import contextlib
import logging
import math
import threading
import uuid
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http import models as qm
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from ..config import VectorStoreSettings
from ..errors import ConfigurationError, DimensionMismatch, VectorStoreUnavailable
from .base import COSINE
from .models import ScoredRecord, SearchFilter, VectorRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSERT_BATCH_SIZE = 256
SCROLL_PAGE_SIZE = 256
# Extra hits fetched past k so points tied at the cut can be ordered by chunk id.
TIE_OVERSHOOT = 8

_DISTANCES = {
    COSINE: qm.Distance.COSINE,
    "dot": qm.Distance.DOT,
    "euclid": qm.Distance.EUCLID,
}

_KEYWORD_FIELDS = ("file_path", "path_prefixes", "language", "project_id")

_BACKEND_ERRORS = (UnexpectedResponse, ResponseHandlingException, ConnectionError, TimeoutError)


def point_id(chunk_id: str) -> str:
    """Qdrant ids must be unsigned ints or UUIDs; derive a UUID from the hex chunk id."""
    return str(uuid.UUID(hex=chunk_id[:32]))


def _build_filter(flt: Optional[SearchFilter]) -> Optional[qm.Filter]:
    if flt is None or flt.is_empty():
        return None

    must: list[qm.Condition] = []
    if flt.project_id:
        must.append(qm.FieldCondition(key="project_id", match=qm.MatchValue(value=flt.project_id)))
    if flt.language:
        must.append(qm.FieldCondition(key="language", match=qm.MatchValue(value=flt.language)))
    if flt.file_path:
        must.append(qm.FieldCondition(key="file_path", match=qm.MatchValue(value=flt.file_path)))
    if flt.path_prefix:
        prefix = flt.path_prefix.strip("/")
        if prefix:
            must.append(qm.FieldCondition(key="path_prefixes", match=qm.MatchValue(value=prefix)))
    return qm.Filter(must=must) if must else None


class QdrantVectorStore:
    def __init__(self, client: QdrantClient, *, local: bool = False):
        self._client = client
        self._local = local
        # Embedded mode keeps collections in plain Python structures.
        self._lock: Optional[threading.RLock] = threading.RLock() if local else None

    @classmethod
    def connect(
        cls,
        url: str,
        *,
        path: Optional[Path] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> "QdrantVectorStore":
        try:
            if path is not None:
                path.mkdir(parents=True, exist_ok=True)
                return cls(QdrantClient(path=str(path)), local=True)
            if url == ":memory:":
                return cls(QdrantClient(":memory:"), local=True)
            client = QdrantClient(
                url=url,
                api_key=api_key,
                timeout=int(math.ceil(timeout)) if timeout else None,
            )
        except (RuntimeError, OSError) as e:
            raise VectorStoreUnavailable(f"Cannot open Qdrant storage at {path or url}: {e}") from e
        except ValueError as e:
            raise ConfigurationError(f"Invalid Qdrant endpoint {url!r}: {e}", component="vector_store") from e
        return cls(client)

    @classmethod
    def from_settings(cls, settings: VectorStoreSettings) -> "QdrantVectorStore":
        return cls.connect(
            settings.url,
            path=settings.path,
            api_key=settings.api_key,
            timeout=settings.timeout_seconds,
        )

    def _guard(self):
        return self._lock if self._lock is not None else contextlib.nullcontext()

    def _call(self, what: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            with self._guard():
                return fn(*args, **kwargs)
        except _BACKEND_ERRORS as e:
            raise VectorStoreUnavailable(f"Qdrant {what} failed: {e}") from e

    def ensure_collection(self, collection: str, dimension: int, distance_metric: str = COSINE) -> bool:
        """Create the collection if absent. Returns True when it was created.

        Raises:
            DimensionMismatch: If the collection exists with another vector size
            ConfigurationError: If it exists with another distance or with named vectors
        """
        distance = _DISTANCES.get(distance_metric)
        if distance is None:
            raise ConfigurationError(f"Unsupported distance metric {distance_metric!r}", component="vector_store")

        if self._call("collection lookup", self._client.collection_exists, collection):
            info = self._call("collection lookup", self._client.get_collection, collection)
            params = info.config.params.vectors
            if not isinstance(params, qm.VectorParams):
                raise ConfigurationError(
                    f"Collection {collection!r} uses named vectors; expected a single unnamed vector",
                    component="vector_store",
                )
            if params.size != dimension:
                raise DimensionMismatch(
                    f"Collection {collection!r} has dimension {params.size} but the model produces {dimension}; "
                    "re-index into a new collection"
                )
            if params.distance != distance:
                raise ConfigurationError(
                    f"Collection {collection!r} uses {params.distance} distance, expected {distance}",
                    component="vector_store",
                )
            return False

        self._call(
            "create collection",
            self._client.create_collection,
            collection_name=collection,
            vectors_config=qm.VectorParams(size=dimension, distance=distance),
        )
        if not self._local:
            for field_name in _KEYWORD_FIELDS:
                self._call(
                    "create payload index",
                    self._client.create_payload_index,
                    collection_name=collection,
                    field_name=field_name,
                    field_schema=qm.PayloadSchemaType.KEYWORD,
                )
        logger.info(f"Created collection {collection} (dim={dimension}, distance={distance_metric})")
        return True

    def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None:
        for i in range(0, len(records), UPSERT_BATCH_SIZE):
            points = [
                qm.PointStruct(
                    id=point_id(r.chunk_id),
                    vector=[float(x) for x in r.vector],
                    payload={**r.payload, "chunk_id": r.chunk_id},
                )
                for r in records[i : i + UPSERT_BATCH_SIZE]
            ]
            self._call("upsert", self._client.upsert, collection_name=collection, points=points, wait=True)

    def delete(self, collection: str, ids: Sequence[str]) -> None:
        if not ids:
            return
        selector = qm.PointIdsList(points=[point_id(i) for i in ids])
        self._call("delete", self._client.delete, collection_name=collection, points_selector=selector, wait=True)

    def set_payloads(self, collection: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        for i in range(0, len(updates), UPSERT_BATCH_SIZE):
            operations = [
                qm.SetPayloadOperation(set_payload=qm.SetPayload(payload=payload, points=[point_id(chunk_id)]))
                for chunk_id, payload in updates[i : i + UPSERT_BATCH_SIZE]
            ]
            self._call(
                "set payload",
                self._client.batch_update_points,
                collection_name=collection,
                update_operations=operations,
                wait=True,
            )

    def delete_by_file(self, collection: str, file_path: str) -> None:
        selector = qm.FilterSelector(filter=_build_filter(SearchFilter(file_path=file_path)))
        self._call("delete", self._client.delete, collection_name=collection, points_selector=selector, wait=True)

    def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        k: int,
        filter: Optional[SearchFilter] = None,
        *,
        min_score: Optional[float] = None,
    ) -> list[ScoredRecord]:
        if k <= 0:
            return []

        query = [float(x) for x in query_vector]
        query_filter = _build_filter(filter)
        limit = k + TIE_OVERSHOOT
        while True:
            response = self._call(
                "search",
                self._client.query_points,
                collection_name=collection,
                query=query,
                query_filter=query_filter,
                limit=limit,
                with_payload=True,
                score_threshold=min_score,
            )
            points = response.points
            # Widen while the tail is still tied with the k-th score.
            if len(points) < limit or points[-1].score < points[k - 1].score:
                break
            limit *= 2

        results: list[ScoredRecord] = []
        for point in points:
            payload = dict(point.payload or {})
            chunk_id = str(payload.get("chunk_id") or point.id)
            results.append(ScoredRecord(chunk_id=chunk_id, score=float(point.score), payload=payload))

        results.sort(key=lambda r: (-r.score, r.chunk_id))
        return results[:k]

    def scroll_payloads(self, collection: str, filter: Optional[SearchFilter] = None) -> Iterator[dict[str, Any]]:
        offset = None
        while True:
            points, offset = self._call(
                "scroll",
                self._client.scroll,
                collection_name=collection,
                scroll_filter=_build_filter(filter),
                limit=SCROLL_PAGE_SIZE,
                offset=offset,
                with_payload=True,
                with_vectors=False,
            )
            for point in points:
                yield dict(point.payload or {})
            if offset is None:
                return

    def count(self, collection: str, filter: Optional[SearchFilter] = None) -> int:
        result = self._call(
            "count",
            self._client.count,
            collection_name=collection,
            count_filter=_build_filter(filter),
            exact=True,
        )
        return int(result.count)

    def close(self) -> None:
        with self._guard():
            self._client.close()
