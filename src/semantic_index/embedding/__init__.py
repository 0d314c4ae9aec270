"""Embedding generation on a selected compute device."""

from .device import resolve_device
from .hashing import HASHING_MODEL_ID, HashingEmbeddingModel
from .loader import SentenceTransformerModel, load_model
from .models import EmbeddingBatch, EmbeddingModel
from .provider import EmbeddingProvider

__all__ = [
    "HASHING_MODEL_ID",
    "EmbeddingBatch",
    "EmbeddingModel",
    "EmbeddingProvider",
    "HashingEmbeddingModel",
    "SentenceTransformerModel",
    "load_model",
    "resolve_device",
]
