from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence

import numpy as np


class EmbeddingModel(Protocol):
    """A loaded, ready-to-infer model handle."""

    model_id: str
    device: str
    quantization: str
    dimension: int
    max_tokens: int
    default_query_prompt: str
    default_document_prompt: str

    def token_count(self, text: str) -> int:
        ...

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        ...


@dataclass(frozen=True, eq=False)
class EmbeddingBatch:
    vectors: np.ndarray  # (n, dimension) float32, L2-normalized, input order
    truncated: list[bool]
    model_id: str
    quantization: str

    def __len__(self) -> int:
        return len(self.truncated)

    @property
    def truncated_count(self) -> int:
        return sum(1 for t in self.truncated if t)
