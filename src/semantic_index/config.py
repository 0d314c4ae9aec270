"""Configuration management for the semantic index."""

import os
import tomllib
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from .errors import ConfigurationError

CONFIG_DIR_NAME = ".semantic_index"
CONFIG_FILE_NAME = "config.toml"
CONFIG_SECTION = "semantic_index"

DEFAULT_MODEL_ID = "Alibaba-NLP/gte-Qwen2-1.5B-instruct"
DEFAULT_QDRANT_URL = "http://localhost:6333"


def _find_repo_root(start_dir: Path) -> Path:
    """Find repository root by walking upward looking for .git or a config dir."""
    current_dir = start_dir

    while True:
        if (current_dir / ".git").exists() or (current_dir / CONFIG_DIR_NAME).exists():
            return current_dir

        parent_dir = current_dir.parent
        if parent_dir == current_dir:
            return start_dir

        current_dir = parent_dir


def _load_repo_config_data(repo_root: Path) -> Optional[dict]:
    """Load the [semantic_index] table from .semantic_index/config.toml if it exists."""
    config_file = repo_root / CONFIG_DIR_NAME / CONFIG_FILE_NAME

    if not config_file.exists():
        return None

    try:
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Malformed config file {config_file}: {e}") from e

    section = data.get(CONFIG_SECTION, {})
    if not isinstance(section, dict):
        raise ConfigurationError(f"[{CONFIG_SECTION}] in {config_file} must be a table")
    return section


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    device = os.environ.get("SEMANTIC_INDEX_DEVICE")
    if device:
        overrides.setdefault("embeddings", {})["device"] = device
    model = os.environ.get("SEMANTIC_INDEX_MODEL")
    if model:
        overrides.setdefault("embeddings", {})["model_id"] = model
    url = os.environ.get("SEMANTIC_INDEX_QDRANT_URL")
    if url:
        overrides.setdefault("vector_store", {})["url"] = url
    return overrides


class EmbeddingSettings(BaseModel):
    """Embedding model, device and batching configuration."""

    model_id: str = Field(default=DEFAULT_MODEL_ID)
    model_path: Optional[Path] = Field(default=None, description="Local weights directory; skips the model hub")
    device: str = Field(default="auto", description="auto, cpu, cuda, cuda:<n>, mps")
    batch_size: int = Field(default=32, gt=0)
    quantization: Literal["none", "int8", "float16"] = Field(default="int8")
    query_prompt: Optional[str] = Field(default=None, description="Overrides the model's own query template")
    document_prompt: Optional[str] = Field(default=None)
    dimension: int = Field(default=384, gt=0, description="Vector size for the offline hashing model")
    timeout_seconds: Optional[float] = Field(default=120.0)
    trust_remote_code: bool = Field(default=True)

    @field_validator("device")
    @classmethod
    def _normalize_device(cls, value: str) -> str:
        value = value.strip().lower()
        if not value:
            raise ValueError("device must not be empty")
        return value


class VectorStoreSettings(BaseModel):
    """Qdrant connection configuration."""

    url: str = Field(default=DEFAULT_QDRANT_URL, description="Server URL or ':memory:'")
    path: Optional[Path] = Field(default=None, description="Embedded on-disk storage; overrides url")
    api_key: Optional[str] = Field(default=None)
    collection_prefix: str = Field(default="semantic-index")
    timeout_seconds: float = Field(default=10.0, gt=0)


class ChunkingSettings(BaseModel):
    """Chunk size limits for grammar units and fallback windows."""

    max_bytes: int = Field(default=6000, gt=0)
    window_lines: int = Field(default=50, gt=0)
    window_overlap: int = Field(default=0, ge=0)

    @field_validator("window_overlap")
    @classmethod
    def _overlap_smaller_than_window(cls, value: int, info) -> int:
        window = info.data.get("window_lines")
        if window is not None and value >= window:
            raise ValueError("window_overlap must be smaller than window_lines")
        return value


class IndexerSettings(BaseModel):
    """Worker pool, retry and state persistence configuration."""

    workers: int = Field(default=4, gt=0)
    queue_size: int = Field(default=256, gt=0)
    retry_attempts: int = Field(default=3, gt=0)
    retry_backoff_seconds: float = Field(default=0.5, ge=0)
    state_db: Path = Field(default=Path(CONFIG_DIR_NAME) / "state.sqlite")
    exclude_globs: list[str] = Field(
        default_factory=lambda: [".git/**", f"{CONFIG_DIR_NAME}/**", "node_modules/**", "target/**", "**/__pycache__/**"]
    )
    max_file_bytes: int = Field(default=1_000_000, gt=0)


class SemanticIndexSettings(BaseModel):
    """Resolved configuration struct read by the core at initialization."""

    enabled: bool = Field(default=True)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    indexer: IndexerSettings = Field(default_factory=IndexerSettings)

    model_config = {"frozen": True}

    def state_db_path(self, project_root: Path) -> Path:
        db_path = self.indexer.state_db.expanduser()
        if not db_path.is_absolute():
            db_path = (project_root / db_path).resolve()
        return db_path


def load_settings(
    project_root: Optional[Path] = None,
    *,
    overrides: Optional[dict[str, Any]] = None,
) -> SemanticIndexSettings:
    """Resolve settings with the following precedence (highest last):

    1. Built-in defaults
    2. repo-local .semantic_index/config.toml [semantic_index] table
    3. SEMANTIC_INDEX_* environment variables
    4. Explicit overrides (CLI options)

    Raises:
        ConfigurationError: If the config file is malformed or a value is invalid
    """
    start = (project_root or Path.cwd()).resolve()
    repo_root = _find_repo_root(start)

    data: dict[str, Any] = _load_repo_config_data(repo_root) or {}
    data = _deep_merge(data, _env_overrides())
    if overrides:
        data = _deep_merge(data, overrides)

    try:
        return SemanticIndexSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid semantic index configuration: {e}") from e
