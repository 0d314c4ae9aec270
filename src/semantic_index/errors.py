"""Error taxonomy for the semantic index.

Structural errors (configuration, dimension mismatch, missing model) reach the
host as a single error carrying the failing component. Transient errors
(embedding batch failures, vector database unavailability) are retried by the
index coordinator and only escape it from the query path.
"""

from __future__ import annotations

from typing import Optional


class SemanticIndexError(Exception):
    """Base class for all semantic index errors."""

    component: str = "semantic_index"

    def __init__(self, message: str, *, component: Optional[str] = None):
        super().__init__(message)
        if component is not None:
            self.component = component

    def describe(self) -> str:
        return f"[{self.component}] {self}"


class ConfigurationError(SemanticIndexError):
    """Bad device, model, endpoint or settings value at startup."""

    component = "configuration"


class DimensionMismatch(ConfigurationError):
    """Existing collection was built with a different vector dimension."""

    component = "vector_store"


class ModelLoadError(SemanticIndexError):
    """Model weights missing, corrupt, or incompatible with the device."""

    component = "embedding"


class ChunkingError(SemanticIndexError):
    """Grammar parse failure. Always handled by falling back to line windows."""

    component = "chunking"


class EmbeddingFailure(SemanticIndexError):
    """A single embedding batch failed or timed out."""

    component = "embedding"


class VectorStoreUnavailable(SemanticIndexError):
    """Connection failure or timeout talking to the vector database."""

    component = "vector_store"


TRANSIENT_ERRORS = (EmbeddingFailure, VectorStoreUnavailable)
