from __future__ import annotations

import logging
import threading
from typing import Optional, Sequence

import numpy as np

from ..config import EmbeddingSettings
from ..errors import EmbeddingFailure
from .loader import load_model
from .models import EmbeddingBatch, EmbeddingModel

logger = logging.getLogger(__name__)


def _l2_normalize(vectors: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(vectors, axis=1, keepdims=True)
    norms[norms == 0.0] = 1.0
    return (vectors / norms).astype(np.float32, copy=False)


class EmbeddingProvider:
    """Converts text into fixed-dimension, L2-normalized vectors.

    Owns the model handle exclusively; callers only see `embed`. Safe to call
    from many threads: inputs are split into batches of at most `batch_size`
    and each batch runs under a per-provider lock, so at most one inference
    pass is in flight on the device at a time.

    Queries and documents are templated with the model's prompts (or the
    configured overrides) before encoding. Inputs longer than the model's
    context are tail-truncated by the model and flagged on the result.
    """

    def __init__(
        self,
        model: EmbeddingModel,
        *,
        batch_size: int = 32,
        query_prompt: Optional[str] = None,
        document_prompt: Optional[str] = None,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self._model = model
        self._batch_size = batch_size
        self._query_prompt = model.default_query_prompt if query_prompt is None else query_prompt
        self._document_prompt = model.default_document_prompt if document_prompt is None else document_prompt
        self._device_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: EmbeddingSettings) -> "EmbeddingProvider":
        return cls(
            load_model(settings),
            batch_size=settings.batch_size,
            query_prompt=settings.query_prompt,
            document_prompt=settings.document_prompt,
        )

    @property
    def model_id(self) -> str:
        return self._model.model_id

    @property
    def dimension(self) -> int:
        return self._model.dimension

    @property
    def device(self) -> str:
        return self._model.device

    @property
    def quantization(self) -> str:
        return self._model.quantization

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def embed(self, texts: Sequence[str], *, is_query: bool = False) -> EmbeddingBatch:
        """Embed texts, one vector per input in input order."""
        prompt = self._query_prompt if is_query else self._document_prompt
        items = [prompt + t for t in texts]

        if not items:
            vectors = np.zeros((0, self.dimension), dtype=np.float32)
            return EmbeddingBatch(vectors=vectors, truncated=[], model_id=self.model_id, quantization=self.quantization)

        parts: list[np.ndarray] = []
        truncated: list[bool] = []
        for i in range(0, len(items), self._batch_size):
            raw, flags = self._run_batch(items[i : i + self._batch_size])
            parts.append(raw)
            truncated.extend(flags)

        batch = EmbeddingBatch(
            vectors=_l2_normalize(np.vstack(parts)),
            truncated=truncated,
            model_id=self.model_id,
            quantization=self.quantization,
        )
        if batch.truncated_count:
            logger.debug(f"{batch.truncated_count}/{len(batch)} input(s) truncated to {self._model.max_tokens} tokens")
        return batch

    def _run_batch(self, batch: list[str]) -> tuple[np.ndarray, list[bool]]:
        with self._device_lock:
            try:
                # Tokenizers are not safe for concurrent use either.
                flags = [self._model.token_count(t) > self._model.max_tokens for t in batch]
                raw = self._model.encode(batch)
            except (RuntimeError, ValueError, MemoryError) as e:
                raise EmbeddingFailure(f"Embedding batch of {len(batch)} item(s) failed: {e}") from e

        raw = np.asarray(raw, dtype=np.float32)
        expected = (len(batch), self._model.dimension)
        if raw.shape != expected:
            raise EmbeddingFailure(f"Model returned vectors of shape {raw.shape}, expected {expected}")
        return raw, flags
