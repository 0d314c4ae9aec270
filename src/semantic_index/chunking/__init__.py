"""Grammar-aware source chunking with line-window fallback."""

from .chunker import CHUNKER_VERSION, chunk_file, compute_chunk_id
from .languages import detect_language, has_grammar
from .models import Chunk, ChunkingConfig, ChunkKind

__all__ = [
    "CHUNKER_VERSION",
    "Chunk",
    "ChunkKind",
    "ChunkingConfig",
    "chunk_file",
    "compute_chunk_id",
    "detect_language",
    "has_grammar",
]
