from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class FileStatus(str, Enum):
    UNTRACKED = "untracked"
    SCANNING = "scanning"
    INDEXED = "indexed"
    STALE = "stale"
    REMOVED = "removed"


class ChangeKind(str, Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileEvent:
    path: str  # project-relative, posix separators
    kind: ChangeKind
    fingerprint: Optional[str] = None


@dataclass(frozen=True)
class IndexEntry:
    path: str
    status: FileStatus
    fingerprint: Optional[str]
    chunk_ids: frozenset[str] = frozenset()
    language: Optional[str] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class SearchResult:
    chunk_id: str
    file_path: str
    start_line: int
    end_line: int
    score: float
    snippet: str
    language: Optional[str] = None
    kind: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_payload(cls, chunk_id: str, score: float, payload: dict[str, Any]) -> "SearchResult":
        return cls(
            chunk_id=chunk_id,
            file_path=str(payload.get("file_path", "")),
            start_line=int(payload.get("start_line", 0)),
            end_line=int(payload.get("end_line", 0)),
            score=score,
            snippet=str(payload.get("content", "")),
            language=payload.get("language"),
            kind=payload.get("kind"),
            name=payload.get("name"),
        )


@dataclass(frozen=True)
class IndexSummary:
    project_root: str
    collection: str
    model_id: str
    device: str
    quantization: str
    dimension: int
    files: dict[str, int] = field(default_factory=dict)
    chunks: int = 0
    pending: int = 0

    @property
    def tracked(self) -> int:
        return sum(self.files.values())
