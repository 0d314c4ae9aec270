from __future__ import annotations

from typing import Any, Iterator, Optional, Protocol, Sequence

from .models import ScoredRecord, SearchFilter, VectorRecord

COSINE = "cosine"


class VectorStore(Protocol):
    """Adapter contract over an external vector database.

    Implementations must be safe for concurrent use by several workers.
    `upsert` and `delete` are idempotent; `search` returns at most `k`
    records in strictly descending score order, ties broken by chunk id,
    including ties that straddle the k-th position.
    """

    def ensure_collection(self, collection: str, dimension: int, distance_metric: str = COSINE) -> bool:
        ...

    def upsert(self, collection: str, records: Sequence[VectorRecord]) -> None:
        ...

    def delete(self, collection: str, ids: Sequence[str]) -> None:
        ...

    def set_payloads(self, collection: str, updates: Sequence[tuple[str, dict[str, Any]]]) -> None:
        """Merge each payload into the existing point with that chunk id; vectors are untouched."""
        ...

    def delete_by_file(self, collection: str, file_path: str) -> None:
        ...

    def search(
        self,
        collection: str,
        query_vector: Sequence[float],
        k: int,
        filter: Optional[SearchFilter] = None,
        *,
        min_score: Optional[float] = None,
    ) -> list[ScoredRecord]:
        ...

    def scroll_payloads(self, collection: str, filter: Optional[SearchFilter] = None) -> Iterator[dict[str, Any]]:
        ...

    def count(self, collection: str, filter: Optional[SearchFilter] = None) -> int:
        ...

    def close(self) -> None:
        ...
