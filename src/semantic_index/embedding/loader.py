"""Model loading: resolves device, loads weights, applies quantization."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import torch
from sentence_transformers import SentenceTransformer

from ..config import EmbeddingSettings
from ..errors import ConfigurationError, ModelLoadError
from .device import resolve_device
from .hashing import HASHING_MODEL_ID, HashingEmbeddingModel
from .models import EmbeddingModel

logger = logging.getLogger(__name__)


class SentenceTransformerModel:
    """EmbeddingModel backed by a sentence-transformers checkpoint."""

    def __init__(self, model_id: str, model: SentenceTransformer, *, device: str, quantization: str):
        dim = model.get_sentence_embedding_dimension()
        if not dim:
            raise ModelLoadError(f"Model {model_id!r} does not report an embedding dimension")
        prompts = getattr(model, "prompts", None) or {}

        self.model_id = model_id
        self.device = device
        self.quantization = quantization
        self.dimension = int(dim)
        self.max_tokens = int(model.max_seq_length or 512)
        self.default_query_prompt = prompts.get("query", "")
        self.default_document_prompt = prompts.get("document", prompts.get("passage", ""))
        self._model = model

    def token_count(self, text: str) -> int:
        encoded = self._model.tokenizer(text, add_special_tokens=True, truncation=False)
        return len(encoded["input_ids"])

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        with torch.inference_mode():
            # prompt="" keeps the model's default prompt out; the provider templates inputs itself.
            out = self._model.encode(
                list(texts),
                prompt="",
                batch_size=max(1, len(texts)),
                convert_to_numpy=True,
                normalize_embeddings=False,
                show_progress_bar=False,
            )
        return np.asarray(out, dtype=np.float32)


def _apply_quantization(model: SentenceTransformer, device: str, quantization: str) -> str:
    if quantization == "none":
        return "none"

    if device == "cpu":
        if quantization == "float16":
            raise ConfigurationError("float16 quantization requires an accelerator device", component="embedding")
        torch.ao.quantization.quantize_dynamic(model, {torch.nn.Linear}, dtype=torch.qint8, inplace=True)
        return "int8"

    model.half()
    if quantization == "int8":
        logger.info(f"int8 dynamic quantization is CPU-only; serving float16 weights on {device}")
    return "float16"


def load_model(settings: EmbeddingSettings) -> EmbeddingModel:
    """Load the configured model onto the resolved device.

    Raises:
        ConfigurationError: If the configured device is unavailable
        ModelLoadError: If weights are missing, corrupt, or incompatible with the device
    """
    if settings.model_id == HASHING_MODEL_ID:
        return HashingEmbeddingModel(settings.dimension)

    device = resolve_device(settings.device)

    if settings.model_path is not None:
        model_path = settings.model_path.expanduser()
        if not model_path.exists():
            raise ModelLoadError(f"Model weights not found at {model_path}")
        source = str(model_path)
    else:
        source = settings.model_id

    try:
        st_model = SentenceTransformer(source, device=device, trust_remote_code=settings.trust_remote_code)
        quantization = _apply_quantization(st_model, device, settings.quantization)
        st_model.eval()
    except (OSError, ValueError, RuntimeError) as e:
        raise ModelLoadError(f"Failed to load embedding model {source!r} on {device}: {e}") from e

    model = SentenceTransformerModel(settings.model_id, st_model, device=device, quantization=quantization)
    logger.info(
        f"Loaded embedding model {settings.model_id} on {device} "
        f"(quantization={quantization}, dim={model.dimension}, max_tokens={model.max_tokens})"
    )
    return model
