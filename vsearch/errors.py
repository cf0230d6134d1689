"""Exception taxonomy for the embedding and retrieval pipeline."""

from __future__ import annotations

from collections.abc import Sequence


class VSearchError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(VSearchError):
    """Invalid or mismatched static configuration. Fatal at startup."""


class InferenceError(VSearchError):
    """Tokenization or model-forward failure. Never retried automatically."""


class IndexUnavailable(VSearchError):
    """The vector index could not be reached, even after retries.

    ``ids`` lists the record ids whose operation did not complete, so the
    caller can retry exactly those.
    """

    def __init__(self, message: str, ids: Sequence | None = None) -> None:
        super().__init__(message)
        self.ids = list(ids or [])


class DimensionMismatch(VSearchError):
    """A vector's length does not match the collection's dimensionality."""

    def __init__(self, expected: int, actual: int, message: str | None = None) -> None:
        super().__init__(
            message or f"vector dimension {actual} does not match collection dimension {expected}"
        )
        self.expected = expected
        self.actual = actual


class DegenerateEmbeddingWarning(UserWarning):
    """An embedding collapsed to the zero vector."""
