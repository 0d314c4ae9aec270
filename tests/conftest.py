"""Pytest fixtures for semantic index tests."""

from pathlib import Path

import pytest

from semantic_index.embedding import EmbeddingProvider, HashingEmbeddingModel
from semantic_index.vectorstore import QdrantVectorStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep SEMANTIC_INDEX_* variables from the developer's shell out of tests."""
    for name in ("SEMANTIC_INDEX_DEVICE", "SEMANTIC_INDEX_MODEL", "SEMANTIC_INDEX_QDRANT_URL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def project(tmp_path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def provider() -> EmbeddingProvider:
    return EmbeddingProvider(HashingEmbeddingModel(256), batch_size=4)


@pytest.fixture
def store():
    """Embedded in-memory Qdrant; no server required."""
    s = QdrantVectorStore.connect(":memory:")
    yield s
    s.close()
