"""Builds the pipeline from :class:`~vsearch.config.Settings`."""

from qdrant_client import AsyncQdrantClient

from vsearch.config import Settings
from vsearch.models.variants import build_model_config
from vsearch.services.encoder import get_encoder
from vsearch.services.pipeline import EmbeddingPipeline
from vsearch.services.retry import RetryPolicy
from vsearch.services.vector_store import VectorStore


def build_pipeline(
    settings: Settings,
    qdrant_client: AsyncQdrantClient,
    *,
    batch_size: int | None = None,
) -> EmbeddingPipeline:
    """Wire the shared encoder, the vector store and the pipeline.

    *batch_size* overrides ``settings.batch_size``.  The returned pipeline
    still needs ``await pipeline.start()``.
    """
    model_config = build_model_config(
        settings.embedding_model,
        tokenizer_name=settings.tokenizer_name,
        max_seq_length=settings.max_seq_length,
        normalize=settings.normalize_embeddings,
        pad_to_max_length=settings.pad_to_max_length,
        device=settings.embedding_device,
    )
    vector_store = VectorStore(
        qdrant_client,
        settings.collection_name,
        retry_policy=RetryPolicy(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        vector_name=settings.vector_name or None,
    )
    return EmbeddingPipeline(
        get_encoder(model_config),
        vector_store,
        batch_size=batch_size if batch_size is not None else settings.batch_size,
        max_concurrency=settings.max_concurrency,
    )
