"""Encoder runtime turning text into fixed-length embedding vectors.

The transformer and its paired tokenizer are loaded once through
sentence-transformers and held for the lifetime of the process.  Pooling is
taken from :class:`~vsearch.models.variants.ModelConfig`, not from the
model's own pooling config.  This module is synchronous (CPU/GPU bound);
async callers should use ``asyncio.to_thread(encoder.encode, texts)``.
"""

from __future__ import annotations

import functools
import logging
from collections.abc import Sequence

import numpy as np
import torch

from vsearch.errors import ConfigError, InferenceError
from vsearch.models.variants import ModelConfig
from vsearch.services.normalizer import normalize_batch
from vsearch.services.tokenizer import Tokenizer

logger = logging.getLogger(__name__)


def resolve_device(name: str) -> torch.device:
    """Parse a device string and make sure the hardware is actually there.

    A missing accelerator is an error; there is no fallback to CPU.
    """
    try:
        device = torch.device(name)
    except RuntimeError as exc:
        raise ConfigError(f"Invalid device '{name}': {exc}") from exc

    if device.type == "cuda":
        if not torch.cuda.is_available():
            raise InferenceError(f"Device '{name}' requested but CUDA is not available")
        if device.index is not None and device.index >= torch.cuda.device_count():
            raise InferenceError(
                f"Device '{name}' requested but only {torch.cuda.device_count()} GPU(s) found"
            )
    elif device.type == "mps" and not torch.backends.mps.is_available():
        raise InferenceError(f"Device '{name}' requested but MPS is not available")
    return device


def pool(hidden: torch.Tensor, attention_mask: torch.Tensor, strategy: str) -> torch.Tensor:
    """Reduce ``[batch, seq_len, hidden]`` token states to ``[batch, hidden]``."""
    if strategy == "cls":
        return hidden[:, 0]
    if strategy == "mean":
        mask = attention_mask.unsqueeze(-1).to(hidden.dtype)
        summed = (hidden * mask).sum(dim=1)
        counts = mask.sum(dim=1).clamp(min=1e-9)
        return summed / counts
    raise ConfigError(f"Unknown pooling strategy '{strategy}'")


class EncoderRuntime:
    """Runs tokenized batches through a pretrained encoder and pools them.

    Instances are read-only after construction and safe to share across
    threads; use :func:`get_encoder` to obtain the process-wide instance.
    """

    def __init__(
        self,
        model: torch.nn.Module,
        tokenizer: Tokenizer,
        config: ModelConfig,
        device: torch.device | None = None,
    ) -> None:
        self.config = config
        self.tokenizer = tokenizer
        self.device = device or torch.device("cpu")
        self.model = model.to(self.device).eval()
        self.dimension = config.dimension

        hidden_size = getattr(getattr(model, "config", None), "hidden_size", None)
        if hidden_size is not None and hidden_size != config.dimension:
            raise ConfigError(
                f"Model '{config.model_name}' produces {hidden_size}-d states, "
                f"configured dimension is {config.dimension}"
            )
        vocab_size = getattr(getattr(model, "config", None), "vocab_size", None)
        if vocab_size is not None and tokenizer.vocab_size > vocab_size:
            raise ConfigError(
                f"Tokenizer '{config.tokenizer_name}' has {tokenizer.vocab_size} tokens but "
                f"model '{config.model_name}' only embeds {vocab_size}"
            )

    @classmethod
    def load(cls, config: ModelConfig) -> EncoderRuntime:
        """Download (if needed) and load the model graph and its tokenizer."""
        from sentence_transformers import models

        device = resolve_device(config.device)
        try:
            module = models.Transformer(
                config.model_name,
                max_seq_length=config.max_seq_length,
                tokenizer_name_or_path=config.tokenizer_name,
            )
        except (OSError, ValueError) as exc:
            raise ConfigError(f"Could not load model '{config.model_name}': {exc}") from exc

        tokenizer = Tokenizer(module.tokenizer, config)
        runtime = cls(module.auto_model, tokenizer, config, device=device)
        logger.info(
            "Loaded encoder '%s' on %s (dim=%d, pooling=%s, normalize=%s).",
            config.model_name,
            device,
            config.dimension,
            config.pooling,
            config.normalize,
        )
        return runtime

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        """Embed one batch of texts.

        Returns a ``float32`` array of shape ``[len(texts), dimension]``.
        """
        features = self.tokenizer.encode(texts)
        inputs = {name: tensor.to(self.device) for name, tensor in features.items()}

        try:
            with torch.inference_mode():
                output = self.model(**inputs)
        except (RuntimeError, ValueError, IndexError) as exc:
            raise InferenceError(f"Forward pass failed: {exc}") from exc

        hidden = output[0] if isinstance(output, tuple) else output.last_hidden_state
        pooled = pool(hidden, inputs["attention_mask"], self.config.pooling)
        vectors = pooled.float().cpu().numpy()

        if vectors.shape != (len(texts), self.dimension):
            raise InferenceError(
                f"Encoder returned shape {vectors.shape}, "
                f"expected ({len(texts)}, {self.dimension})"
            )
        return normalize_batch(vectors, enabled=self.config.normalize)

    def embed(self, texts: Sequence[str], batch_size: int = 32) -> list[list[float]]:
        """Embed any number of texts, *batch_size* at a time."""
        vectors: list[list[float]] = []
        for start in range(0, len(texts), batch_size):
            vectors.extend(self.encode(texts[start : start + batch_size]).tolist())
        return vectors


@functools.lru_cache(maxsize=4)
def get_encoder(config: ModelConfig) -> EncoderRuntime:
    """Return the shared encoder for *config*, loading it on first use."""
    return EncoderRuntime.load(config)
