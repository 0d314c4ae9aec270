from pathlib import Path

import pytest
from pydantic import ValidationError

from semantic_index.config import DEFAULT_MODEL_ID, DEFAULT_QDRANT_URL, SemanticIndexSettings, load_settings
from semantic_index.errors import ConfigurationError


def _write_config(root: Path, body: str) -> None:
    config_dir = root / ".semantic_index"
    config_dir.mkdir(parents=True, exist_ok=True)
    (config_dir / "config.toml").write_text(body, encoding="utf-8")


def test_defaults(project):
    (project / ".git").mkdir()
    settings = load_settings(project)

    assert settings.enabled is True
    assert settings.embeddings.model_id == DEFAULT_MODEL_ID
    assert settings.embeddings.device == "auto"
    assert settings.embeddings.batch_size == 32
    assert settings.embeddings.quantization == "int8"
    assert settings.vector_store.url == DEFAULT_QDRANT_URL
    assert settings.chunking.window_lines == 50
    assert settings.chunking.window_overlap == 0


def test_repo_config_file_is_read(project):
    _write_config(
        project,
        """
[semantic_index]
enabled = true

[semantic_index.embeddings]
device = "CUDA:1"
batch_size = 8
quantization = "float16"

[semantic_index.vector_store]
url = "http://qdrant.internal:6333"

[semantic_index.indexer]
workers = 2
exclude_globs = ["vendor/**"]
""",
    )
    settings = load_settings(project)

    assert settings.embeddings.device == "cuda:1"
    assert settings.embeddings.batch_size == 8
    assert settings.embeddings.quantization == "float16"
    assert settings.vector_store.url == "http://qdrant.internal:6333"
    assert settings.indexer.workers == 2
    assert settings.indexer.exclude_globs == ["vendor/**"]


def test_config_is_found_from_a_subdirectory(project):
    _write_config(project, "[semantic_index.embeddings]\nbatch_size = 4\n")
    nested = project / "src" / "pkg"
    nested.mkdir(parents=True)
    assert load_settings(nested).embeddings.batch_size == 4


def test_env_overrides_file_and_cli_overrides_env(project, monkeypatch):
    _write_config(project, '[semantic_index.embeddings]\ndevice = "cpu"\n')
    monkeypatch.setenv("SEMANTIC_INDEX_DEVICE", "mps")
    monkeypatch.setenv("SEMANTIC_INDEX_QDRANT_URL", "http://env:6333")
    monkeypatch.setenv("SEMANTIC_INDEX_MODEL", "hashing")

    settings = load_settings(project)
    assert settings.embeddings.device == "mps"
    assert settings.embeddings.model_id == "hashing"
    assert settings.vector_store.url == "http://env:6333"

    settings = load_settings(project, overrides={"embeddings": {"device": "cuda:0"}})
    assert settings.embeddings.device == "cuda:0"
    assert settings.embeddings.model_id == "hashing"


def test_malformed_toml_is_a_configuration_error(project):
    _write_config(project, "[semantic_index\nbroken = ")
    with pytest.raises(ConfigurationError, match="Malformed"):
        load_settings(project)


@pytest.mark.parametrize(
    "body",
    [
        "[semantic_index.embeddings]\nbatch_size = 0\n",
        '[semantic_index.embeddings]\nquantization = "int4"\n',
        "[semantic_index.chunking]\nwindow_lines = 10\nwindow_overlap = 10\n",
        "semantic_index = 3\n",
    ],
)
def test_invalid_values_are_configuration_errors(project, body):
    _write_config(project, body)
    with pytest.raises(ConfigurationError):
        load_settings(project)


def test_settings_are_frozen():
    settings = SemanticIndexSettings()
    with pytest.raises(ValidationError):
        settings.enabled = False


def test_state_db_path_is_resolved_against_the_project(project):
    settings = SemanticIndexSettings()
    assert settings.state_db_path(project) == (project / ".semantic_index" / "state.sqlite").resolve()

    absolute = project / "elsewhere.sqlite"
    settings = SemanticIndexSettings.model_validate({"indexer": {"state_db": str(absolute)}})
    assert settings.state_db_path(project) == absolute
