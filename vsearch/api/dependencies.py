"""FastAPI dependency injection providers."""

from fastapi import Request

from vsearch.services.pipeline import EmbeddingPipeline


def get_pipeline(request: Request) -> EmbeddingPipeline:
    return request.app.state.pipeline
