from __future__ import annotations

import torch

from ..errors import ConfigurationError


def _mps_available() -> bool:
    backend = getattr(torch.backends, "mps", None)
    return bool(backend is not None and backend.is_available())


def resolve_device(requested: str) -> str:
    """Resolve a configured device to a torch device string.

    Priority: explicit device > auto-detected accelerator > CPU. An explicit
    device that is not available fails fast instead of degrading to CPU.
    """
    value = requested.strip().lower()

    if value == "auto":
        if torch.cuda.is_available():
            return "cuda:0"
        if _mps_available():
            return "mps"
        return "cpu"

    if value == "cpu":
        return "cpu"

    if value in {"mps", "metal"}:
        if not _mps_available():
            raise ConfigurationError(f"Configured device {requested!r} is not available", component="embedding")
        return "mps"

    if value == "cuda" or value.startswith("cuda:"):
        index_str = value.partition(":")[2] or "0"
        if not index_str.isdigit():
            raise ConfigurationError(f"Invalid CUDA device id in {requested!r}", component="embedding")
        index = int(index_str)
        if not torch.cuda.is_available():
            raise ConfigurationError(f"Configured device {requested!r} is not available: CUDA not detected", component="embedding")
        if index >= torch.cuda.device_count():
            raise ConfigurationError(
                f"Configured device {requested!r} is not available: {torch.cuda.device_count()} CUDA device(s) found",
                component="embedding",
            )
        return f"cuda:{index}"

    raise ConfigurationError(f"Unknown device {requested!r}", component="embedding")
