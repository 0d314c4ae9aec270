"""Semantic code search: chunking, embedding, vector storage and incremental indexing."""

__version__ = "0.1.0"
