from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ChunkKind(str, Enum):
    FUNCTION = "function"
    CLASS = "class"
    BLOCK = "block"
    WINDOW = "window"


@dataclass(frozen=True)
class ChunkingConfig:
    max_bytes: int
    window_lines: int
    window_overlap: int

    def signature(self) -> str:
        return f"max={self.max_bytes};window={self.window_lines};overlap={self.window_overlap}"


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    file_path: str
    start_byte: int
    end_byte: int
    start_line: int  # 1-based, inclusive
    end_line: int  # 1-based, inclusive
    text: str
    language: str
    kind: ChunkKind
    name: Optional[str] = None

    def embedding_text(self) -> str:
        return f"{self.file_path}\n{self.text}"
