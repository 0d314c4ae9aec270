from __future__ import annotations

import hashlib
import re
from typing import Sequence

import numpy as np

HASHING_MODEL_ID = "hashing"

_WORD_RE = re.compile(r"[A-Za-z0-9]+")
_SUBWORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")


class HashingEmbeddingModel:
    """Deterministic offline embedding model.

    Feature-hashes identifier and word tokens (snake_case and camelCase are
    split, lower-cased) into a fixed number of dimensions using SHA-256 for the
    bucket and sign. Texts sharing vocabulary land close together, which is
    enough for tests and air-gapped use; no weights or accelerator required.
    """

    def __init__(self, dim: int, *, max_tokens: int = 512):
        if dim <= 0:
            raise ValueError("embeddings dimension must be > 0")
        self.model_id = HASHING_MODEL_ID
        self.device = "cpu"
        self.quantization = "none"
        self.dimension = dim
        self.max_tokens = max_tokens
        self.default_query_prompt = ""
        self.default_document_prompt = ""

    def tokenize(self, text: str) -> list[str]:
        tokens: list[str] = []
        for word in _WORD_RE.findall(text):
            tokens.extend(part.lower() for part in _SUBWORD_RE.findall(word))
        return tokens

    def token_count(self, text: str) -> int:
        return len(self.tokenize(text))

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        out = np.zeros((len(texts), self.dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            # Tail truncation at max_tokens.
            for token in self.tokenize(text)[: self.max_tokens]:
                digest = hashlib.sha256(token.encode("utf-8")).digest()
                bucket = int.from_bytes(digest[:4], "little") % self.dimension
                out[row, bucket] += 1.0 if digest[4] & 1 else -1.0
            if not out[row].any():
                out[row] = self._digest_vector(text)
        return out

    def _digest_vector(self, text: str) -> np.ndarray:
        data = text.encode("utf-8")
        floats: list[float] = []
        counter = 0
        while len(floats) < self.dimension:
            h = hashlib.sha256()
            h.update(counter.to_bytes(4, "little"))
            h.update(data)
            digest = h.digest()
            for i in range(0, len(digest), 4):
                if len(floats) >= self.dimension:
                    break
                word = int.from_bytes(digest[i : i + 4], "little", signed=False)
                # Map to [-1, 1] deterministically.
                floats.append(((word / 0xFFFFFFFF) * 2.0) - 1.0)
            counter += 1
        return np.asarray(floats, dtype=np.float32)
