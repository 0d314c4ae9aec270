from .base import COSINE, VectorStore
from .models import ScoredRecord, SearchFilter, VectorRecord
from .qdrant import QdrantVectorStore, point_id

__all__ = [
    "COSINE",
    "QdrantVectorStore",
    "ScoredRecord",
    "SearchFilter",
    "VectorRecord",
    "VectorStore",
    "point_id",
]
