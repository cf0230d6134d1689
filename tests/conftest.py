"""Shared fixtures: a deterministic fake encoder and in-memory Qdrant collections."""

from collections.abc import Sequence

import numpy as np
import pytest
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import Distance, VectorParams

from vsearch.errors import InferenceError
from vsearch.models.variants import ModelConfig, build_model_config
from vsearch.services.normalizer import normalize_batch
from vsearch.services.retry import RetryPolicy
from vsearch.services.vector_store import VectorStore

COLLECTION = "cases"
BAD_MARKER = "<bad>"


class CharBagEncoder:
    """Bag-of-characters embedding: each character bumps one hashed component.

    Texts sharing characters get high cosine similarity, which is enough to
    exercise ranking without downloading a model.  Any text containing
    ``<bad>`` makes the whole batch fail, as a real tokenizer would on
    malformed input.
    """

    def __init__(self, config: ModelConfig | None = None) -> None:
        self.config = config or build_model_config("BGESmallZHV15")
        self.calls: list[list[str]] = []

    def encode(self, texts: Sequence[str]) -> np.ndarray:
        self.calls.append(list(texts))
        if any(BAD_MARKER in t for t in texts):
            raise InferenceError("malformed input")
        out = np.zeros((len(texts), self.config.dimension), dtype=np.float32)
        for row, text in enumerate(texts):
            for ch in text:
                out[row, ord(ch) % self.config.dimension] += 1.0
        return normalize_batch(out, enabled=self.config.normalize)


@pytest.fixture
def encoder() -> CharBagEncoder:
    return CharBagEncoder()


async def make_store(
    dimension: int = 512,
    distance: Distance = Distance.COSINE,
    retry_policy: RetryPolicy | None = None,
) -> VectorStore:
    client = AsyncQdrantClient(":memory:")
    await client.create_collection(
        collection_name=COLLECTION,
        vectors_config=VectorParams(size=dimension, distance=distance),
    )
    return VectorStore(client, COLLECTION, retry_policy=retry_policy or RetryPolicy.none())


@pytest.fixture
async def vector_store() -> VectorStore:
    return await make_store()
