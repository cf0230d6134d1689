"""L2 normalisation of embedding vectors.

When enabled, vectors are scaled to unit length so that cosine similarity
and dot product rank identically.  Zero vectors are returned unchanged.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence

import numpy as np

from vsearch.errors import DegenerateEmbeddingWarning

logger = logging.getLogger(__name__)


def normalize_batch(vectors: np.ndarray, enabled: bool = True) -> np.ndarray:
    """Normalise each row of a ``[batch, dim]`` matrix.

    Returns a new array; the input is never modified.  Rows with zero norm
    are left as zeros and a :class:`DegenerateEmbeddingWarning` is emitted.
    """
    matrix = np.array(vectors, dtype=np.float32, copy=True, ndmin=2)
    if not enabled:
        return matrix

    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    zero_rows = norms[:, 0] == 0.0
    if zero_rows.any():
        rows = np.flatnonzero(zero_rows).tolist()
        logger.warning("Embedding collapsed to the zero vector at batch rows %s.", rows)
        warnings.warn(
            f"zero embedding at batch rows {rows}; check the input text",
            DegenerateEmbeddingWarning,
            stacklevel=2,
        )
        norms[zero_rows] = 1.0
    return matrix / norms


def normalize(vector: Sequence[float] | np.ndarray, enabled: bool = True) -> list[float]:
    """Normalise a single vector. See :func:`normalize_batch`."""
    return normalize_batch(np.asarray(vector, dtype=np.float32)[np.newaxis, :], enabled)[0].tolist()
