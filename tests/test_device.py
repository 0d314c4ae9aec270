import pytest
import torch

from semantic_index.config import EmbeddingSettings
from semantic_index.embedding import device as devmod
from semantic_index.embedding import load_model
from semantic_index.embedding.loader import _apply_quantization
from semantic_index.errors import ConfigurationError, ModelLoadError


def _no_accelerators(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(devmod, "_mps_available", lambda: False)


def _two_gpus(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: True)
    monkeypatch.setattr(torch.cuda, "device_count", lambda: 2)


def test_auto_falls_back_to_cpu(monkeypatch):
    _no_accelerators(monkeypatch)
    assert devmod.resolve_device("auto") == "cpu"


def test_auto_prefers_cuda(monkeypatch):
    _two_gpus(monkeypatch)
    assert devmod.resolve_device("auto") == "cuda:0"


def test_auto_uses_mps_without_cuda(monkeypatch):
    monkeypatch.setattr(torch.cuda, "is_available", lambda: False)
    monkeypatch.setattr(devmod, "_mps_available", lambda: True)
    assert devmod.resolve_device("AUTO") == "mps"


def test_explicit_device_is_honored(monkeypatch):
    _two_gpus(monkeypatch)
    assert devmod.resolve_device("cuda") == "cuda:0"
    assert devmod.resolve_device("cuda:1") == "cuda:1"
    assert devmod.resolve_device("cpu") == "cpu"


def test_unavailable_explicit_device_fails_fast(monkeypatch):
    _no_accelerators(monkeypatch)
    with pytest.raises(ConfigurationError, match="not available") as exc:
        devmod.resolve_device("cuda:0")
    assert exc.value.component == "embedding"

    with pytest.raises(ConfigurationError):
        devmod.resolve_device("mps")


def test_out_of_range_cuda_index(monkeypatch):
    _two_gpus(monkeypatch)
    with pytest.raises(ConfigurationError, match="2 CUDA device"):
        devmod.resolve_device("cuda:3")


def test_unknown_device_rejected():
    with pytest.raises(ConfigurationError, match="Unknown device"):
        devmod.resolve_device("tpu")
    with pytest.raises(ConfigurationError, match="Invalid CUDA device"):
        devmod.resolve_device("cuda:x")


def test_missing_local_weights_is_model_load_error(tmp_path, monkeypatch):
    _no_accelerators(monkeypatch)
    settings = EmbeddingSettings(model_id="local/model", model_path=tmp_path / "missing", device="cpu")
    with pytest.raises(ModelLoadError, match="not found"):
        load_model(settings)


def test_float16_on_cpu_is_a_configuration_error():
    module = torch.nn.Sequential(torch.nn.Linear(4, 4))
    with pytest.raises(ConfigurationError, match="accelerator"):
        _apply_quantization(module, "cpu", "float16")


def test_int8_on_cpu_quantizes_linear_layers():
    module = torch.nn.Sequential(torch.nn.Linear(4, 4))
    assert _apply_quantization(module, "cpu", "int8") == "int8"
    assert isinstance(module[0], torch.ao.nn.quantized.dynamic.Linear)


def test_no_quantization_leaves_model_alone():
    module = torch.nn.Sequential(torch.nn.Linear(4, 4))
    assert _apply_quantization(module, "cpu", "none") == "none"
    assert isinstance(module[0], torch.nn.Linear)
    assert module[0].weight.dtype == torch.float32
