from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Sequence


@dataclass(frozen=True)
class VectorRecord:
    chunk_id: str
    vector: Sequence[float]
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScoredRecord:
    chunk_id: str
    score: float
    payload: dict[str, Any]


@dataclass(frozen=True)
class SearchFilter:
    """Metadata filter; all set fields must match."""

    language: Optional[str] = None
    path_prefix: Optional[str] = None
    file_path: Optional[str] = None
    project_id: Optional[str] = None

    def is_empty(self) -> bool:
        return not (self.language or self.path_prefix or self.file_path or self.project_id)
