import threading
import time

import numpy as np
import pytest

from semantic_index.config import EmbeddingSettings
from semantic_index.embedding import EmbeddingProvider, HashingEmbeddingModel, load_model
from semantic_index.errors import EmbeddingFailure


def _texts() -> list[str]:
    return [
        "def parse_config(path): return toml.load(path)",
        "class ShoppingCart: items = []",
        "fn add(a: i32, b: i32) -> i32 { a + b }",
        "SELECT * FROM users WHERE id = ?",
        "func main() { fmt.Println(\"hello\") }",
    ]


class _SlowModel(HashingEmbeddingModel):
    def __init__(self, dim: int):
        super().__init__(dim)
        self.active = 0
        self.max_active = 0
        self._counter = threading.Lock()

    def encode(self, texts):
        with self._counter:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.01)
            return super().encode(texts)
        finally:
            with self._counter:
                self.active -= 1


class _BrokenModel(HashingEmbeddingModel):
    def encode(self, texts):
        raise RuntimeError("CUDA out of memory")


class _WrongShapeModel(HashingEmbeddingModel):
    def encode(self, texts):
        return np.zeros((len(texts), self.dimension + 1), dtype=np.float32)


def test_one_unit_vector_per_input_in_order():
    provider = EmbeddingProvider(HashingEmbeddingModel(64), batch_size=2)
    batch = provider.embed(_texts())

    assert batch.vectors.shape == (5, 64)
    assert batch.vectors.dtype == np.float32
    assert np.allclose(np.linalg.norm(batch.vectors, axis=1), 1.0, atol=1e-5)
    assert batch.model_id == "hashing"
    assert len(batch) == 5

    single = provider.embed([_texts()[3]])
    assert np.allclose(batch.vectors[3], single.vectors[0])


def test_batching_does_not_change_outputs():
    model = HashingEmbeddingModel(128)
    batched = EmbeddingProvider(model, batch_size=3).embed(_texts()).vectors
    one_by_one = np.vstack([EmbeddingProvider(model, batch_size=1).embed([t]).vectors for t in _texts()])

    assert np.max(np.abs(batched - one_by_one)) < 1e-3


def test_query_prompt_is_applied_internally():
    model = HashingEmbeddingModel(128)
    provider = EmbeddingProvider(model, query_prompt="search query: ", document_prompt="")

    as_query = provider.embed(["alpha beta"], is_query=True).vectors[0]
    as_document = provider.embed(["alpha beta"]).vectors[0]
    templated = provider.embed(["search query: alpha beta"]).vectors[0]

    assert not np.allclose(as_query, as_document)
    assert np.allclose(as_query, templated)


def test_long_inputs_are_tail_truncated_and_flagged():
    provider = EmbeddingProvider(HashingEmbeddingModel(64, max_tokens=4))
    batch = provider.embed(["one two three four five six", "one two"])

    assert batch.truncated == [True, False]
    assert batch.truncated_count == 1
    head = provider.embed(["one two three four"]).vectors[0]
    assert np.allclose(batch.vectors[0], head)


def test_empty_input_returns_empty_batch():
    provider = EmbeddingProvider(HashingEmbeddingModel(32))
    batch = provider.embed([])
    assert batch.vectors.shape == (0, 32)
    assert batch.truncated == []


def test_concurrent_callers_never_overlap_on_the_device():
    model = _SlowModel(64)
    provider = EmbeddingProvider(model, batch_size=2)
    expected = provider.embed(_texts()).vectors
    results: list[np.ndarray] = []
    errors: list[BaseException] = []

    def run():
        try:
            results.append(provider.embed(_texts()).vectors)
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=run) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert model.max_active == 1
    assert len(results) == 8
    for r in results:
        assert np.allclose(r, expected)


def test_model_errors_become_embedding_failure():
    provider = EmbeddingProvider(_BrokenModel(16))
    with pytest.raises(EmbeddingFailure, match="out of memory"):
        provider.embed(["x"])


def test_wrong_vector_shape_is_an_embedding_failure():
    provider = EmbeddingProvider(_WrongShapeModel(16))
    with pytest.raises(EmbeddingFailure, match="shape"):
        provider.embed(["x"])


def test_invalid_batch_size_rejected():
    with pytest.raises(ValueError):
        EmbeddingProvider(HashingEmbeddingModel(16), batch_size=0)


def test_from_settings_with_hashing_model():
    provider = EmbeddingProvider.from_settings(
        EmbeddingSettings(model_id="hashing", dimension=48, batch_size=7, query_prompt="q: ")
    )
    assert provider.dimension == 48
    assert provider.batch_size == 7
    assert provider.device == "cpu"
    assert provider.quantization == "none"


def test_load_model_hashing_skips_device_resolution():
    model = load_model(EmbeddingSettings(model_id="hashing", dimension=24, device="cuda:7"))
    assert isinstance(model, HashingEmbeddingModel)
    assert model.dimension == 24
