import numpy as np

from semantic_index.embedding import HashingEmbeddingModel


def _cos(a: np.ndarray, b: np.ndarray) -> float:
    return float(np.dot(a, b) / (np.linalg.norm(a) * np.linalg.norm(b)))


def test_tokenize_splits_identifiers():
    model = HashingEmbeddingModel(16)
    assert model.tokenize("parseHTTPResponse snake_case v2") == ["parse", "http", "response", "snake", "case", "v", "2"]
    assert model.token_count("getUserName") == 3


def test_encode_is_deterministic():
    model = HashingEmbeddingModel(32)
    a = model.encode(["hello world", "foo bar"])
    b = model.encode(["hello world", "foo bar"])
    assert a.shape == (2, 32)
    assert np.array_equal(a, b)


def test_shared_vocabulary_scores_higher():
    model = HashingEmbeddingModel(256)
    query, near, far = model.encode(
        [
            "sum the prices in the shopping cart",
            "def cart_total(cart): return sum(item.prices for item in cart) # shopping",
            "def read_config(path): return json.load(open(path))",
        ]
    )
    assert _cos(query, near) > _cos(query, far)


def test_text_without_tokens_still_gets_a_vector():
    model = HashingEmbeddingModel(8)
    vec = model.encode(["{}();"])[0]
    assert np.any(vec != 0)
    assert np.all(np.abs(vec) <= 1.0)
