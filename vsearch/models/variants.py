"""Supported encoder variants and the process-wide model configuration.

Every dimension-dependent constant lives on the variant, so the rest of the
pipeline only ever reads ``ModelConfig`` and never branches on the model.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel

from vsearch.errors import ConfigError

Pooling = Literal["cls", "mean"]


class VariantSpec(BaseModel):
    model_name: str
    tokenizer_name: str
    dimension: int
    pooling: Pooling
    max_seq_length: int

    model_config = {"frozen": True}


class ModelVariant(str, Enum):
    BGESmallZHV15 = "BGESmallZHV15"
    BGELargeZHV15 = "BGELargeZHV15"
    BGESmallENV15 = "BGESmallENV15"
    BGEBaseENV15 = "BGEBaseENV15"

    @property
    def spec(self) -> VariantSpec:
        return _VARIANTS[self]


_VARIANTS: dict[ModelVariant, VariantSpec] = {
    ModelVariant.BGESmallZHV15: VariantSpec(
        model_name="BAAI/bge-small-zh-v1.5",
        tokenizer_name="BAAI/bge-small-zh-v1.5",
        dimension=512,
        pooling="cls",
        max_seq_length=512,
    ),
    ModelVariant.BGELargeZHV15: VariantSpec(
        model_name="BAAI/bge-large-zh-v1.5",
        tokenizer_name="BAAI/bge-large-zh-v1.5",
        dimension=1024,
        pooling="cls",
        max_seq_length=512,
    ),
    ModelVariant.BGESmallENV15: VariantSpec(
        model_name="BAAI/bge-small-en-v1.5",
        tokenizer_name="BAAI/bge-small-en-v1.5",
        dimension=384,
        pooling="cls",
        max_seq_length=512,
    ),
    ModelVariant.BGEBaseENV15: VariantSpec(
        model_name="BAAI/bge-base-en-v1.5",
        tokenizer_name="BAAI/bge-base-en-v1.5",
        dimension=768,
        pooling="cls",
        max_seq_length=512,
    ),
}


class ModelConfig(BaseModel):
    """Frozen encoder configuration, fixed for the lifetime of the process."""

    variant: ModelVariant
    model_name: str
    tokenizer_name: str
    dimension: int
    pooling: Pooling
    max_seq_length: int
    normalize: bool = True
    pad_to_max_length: bool = False
    device: str = "cpu"

    model_config = {"frozen": True}


def resolve_variant(name: str) -> ModelVariant:
    """Look a variant up by enum name (``BGESmallZHV15``) or hub id."""
    for variant in ModelVariant:
        if name in (variant.value, variant.spec.model_name):
            return variant
    known = ", ".join(v.value for v in ModelVariant)
    raise ConfigError(f"Unknown embedding model '{name}'. Known variants: {known}")


def build_model_config(
    embedding_model: str,
    *,
    tokenizer_name: str = "",
    max_seq_length: int | None = None,
    normalize: bool = True,
    pad_to_max_length: bool = False,
    device: str = "cpu",
) -> ModelConfig:
    """Resolve a variant and validate the overrides against its constants.

    Raises:
        ConfigError: unknown variant, a tokenizer that is not the one paired
            with the model, or a non-positive sequence length.
    """
    variant = resolve_variant(embedding_model)
    spec = variant.spec

    if tokenizer_name and tokenizer_name != spec.tokenizer_name:
        raise ConfigError(
            f"Tokenizer '{tokenizer_name}' is not paired with model '{spec.model_name}' "
            f"(expected '{spec.tokenizer_name}')"
        )

    seq_len = spec.max_seq_length
    if max_seq_length is not None:
        if max_seq_length <= 0:
            raise ConfigError(f"max_seq_length must be positive, got {max_seq_length}")
        seq_len = min(max_seq_length, spec.max_seq_length)

    return ModelConfig(
        variant=variant,
        model_name=spec.model_name,
        tokenizer_name=spec.tokenizer_name,
        dimension=spec.dimension,
        pooling=spec.pooling,
        max_seq_length=seq_len,
        normalize=normalize,
        pad_to_max_length=pad_to_max_length,
        device=device,
    )
