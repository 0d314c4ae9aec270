"""Wires resolved settings into a ready-to-start index coordinator."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from .chunking import ChunkingConfig
from .config import SemanticIndexSettings
from .embedding import EmbeddingProvider
from .errors import ConfigurationError
from .index import IndexCoordinator, RetryPolicy, project_id_for
from .vectorstore import QdrantVectorStore, VectorStore

logger = logging.getLogger(__name__)


def collection_name(prefix: str, project_id: str, model_id: str) -> str:
    """One collection per project and model, so vectors of different models never mix."""
    slug = re.sub(r"[^a-z0-9]+", "-", model_id.lower()).strip("-")
    return f"{prefix}-{project_id}-{slug}"


def build_coordinator(
    settings: SemanticIndexSettings,
    project_root: Path,
    *,
    provider: Optional[EmbeddingProvider] = None,
    store: Optional[VectorStore] = None,
) -> IndexCoordinator:
    """Load the model, connect the vector store and construct the coordinator.

    The returned coordinator is not started yet.

    Raises:
        ConfigurationError: If the feature is disabled or a setting is unusable
        ModelLoadError: If the embedding model cannot be loaded
    """
    if not settings.enabled:
        raise ConfigurationError("Semantic index is disabled in configuration")

    project_root = project_root.resolve()
    provider = provider or EmbeddingProvider.from_settings(settings.embeddings)

    owns_store = store is None
    if store is None:
        vs = settings.vector_store
        if vs.path is not None and not vs.path.expanduser().is_absolute():
            vs = vs.model_copy(update={"path": project_root / vs.path})
        store = QdrantVectorStore.from_settings(vs)

    project_id = project_id_for(project_root)
    indexer = settings.indexer
    coordinator = IndexCoordinator(
        project_root,
        provider=provider,
        store=store,
        collection=collection_name(settings.vector_store.collection_prefix, project_id, provider.model_id),
        chunking=ChunkingConfig(
            max_bytes=settings.chunking.max_bytes,
            window_lines=settings.chunking.window_lines,
            window_overlap=settings.chunking.window_overlap,
        ),
        project_id=project_id,
        workers=indexer.workers,
        queue_size=indexer.queue_size,
        retry_policy=RetryPolicy(attempts=indexer.retry_attempts, backoff_seconds=indexer.retry_backoff_seconds),
        embed_timeout=settings.embeddings.timeout_seconds,
        store_timeout=settings.vector_store.timeout_seconds,
        exclude_globs=indexer.exclude_globs,
        max_file_bytes=indexer.max_file_bytes,
        state_db=settings.state_db_path(project_root),
        owns_store=owns_store,
    )
    logger.debug(f"Built coordinator for {project_root} using collection {coordinator.collection}")
    return coordinator
