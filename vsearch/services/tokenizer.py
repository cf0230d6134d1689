"""Tokenizer wrapper producing rectangular model inputs.

The tokenizer is always the one paired with the configured model variant;
loading anything else would silently corrupt embeddings.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from transformers import AutoTokenizer, BatchEncoding, PreTrainedTokenizerBase

from vsearch.errors import ConfigError, InferenceError
from vsearch.models.variants import ModelConfig

logger = logging.getLogger(__name__)


class Tokenizer:
    """Converts a batch of strings into ``input_ids``/``attention_mask`` tensors.

    Sequences are right-padded with the tokenizer's pad token.  The padded
    length is the longest input in the batch, capped at
    ``config.max_seq_length``, unless ``config.pad_to_max_length`` is set,
    in which case every batch is exactly ``max_seq_length`` wide.
    """

    def __init__(self, tokenizer: PreTrainedTokenizerBase, config: ModelConfig) -> None:
        if tokenizer.pad_token_id is None:
            raise ConfigError(f"Tokenizer '{config.tokenizer_name}' has no padding token")
        tokenizer.padding_side = "right"
        self._tokenizer = tokenizer
        self.config = config

    @classmethod
    def load(cls, config: ModelConfig) -> Tokenizer:
        """Load the tokenizer artifact paired with ``config.model_name``."""
        try:
            tokenizer = AutoTokenizer.from_pretrained(config.tokenizer_name)
        except (OSError, ValueError) as exc:
            raise ConfigError(
                f"Could not load tokenizer '{config.tokenizer_name}': {exc}"
            ) from exc
        logger.info(
            "Loaded tokenizer '%s' (vocab=%d, max_seq_length=%d).",
            config.tokenizer_name,
            len(tokenizer),
            config.max_seq_length,
        )
        return cls(tokenizer, config)

    @property
    def vocab_size(self) -> int:
        return len(self._tokenizer)

    @property
    def pad_token_id(self) -> int:
        return self._tokenizer.pad_token_id  # type: ignore[return-value]

    def encode(self, texts: Sequence[str]) -> BatchEncoding:
        """Tokenize *texts* into PyTorch tensors of shape ``[batch, seq_len]``.

        Raises:
            InferenceError: the batch is empty or contains a non-string.
        """
        if not texts:
            raise InferenceError("Cannot tokenize an empty batch")
        for i, text in enumerate(texts):
            if not isinstance(text, str):
                raise InferenceError(f"Input {i} is {type(text).__name__}, expected str")

        padding = "max_length" if self.config.pad_to_max_length else "longest"
        try:
            return self._tokenizer(
                list(texts),
                padding=padding,
                truncation=True,
                max_length=self.config.max_seq_length,
                return_tensors="pt",
            )
        except (ValueError, TypeError) as exc:
            raise InferenceError(f"Tokenization failed: {exc}") from exc
