"""API route definitions."""

import time

from fastapi import APIRouter, Depends

from vsearch.api.dependencies import get_pipeline
from vsearch.models.domain import IndexReport
from vsearch.models.schemas import IndexRequest, SearchRequest, SearchResponse
from vsearch.services.pipeline import EmbeddingPipeline

router = APIRouter(prefix="/api")


@router.post("/index", response_model=IndexReport)
async def index(
    body: IndexRequest,
    pipeline: EmbeddingPipeline = Depends(get_pipeline),
):
    """Embed and upsert a batch of records; failures are reported per id."""
    return await pipeline.index_records(body.records)


@router.post("/search", response_model=SearchResponse)
async def search(
    body: SearchRequest,
    pipeline: EmbeddingPipeline = Depends(get_pipeline),
):
    """Run one or more semantic queries against the collection."""
    start = time.monotonic()
    outcomes = await pipeline.search_many(body.queries, top_k=body.top_k, filter=body.filter)
    elapsed = (time.monotonic() - start) * 1000
    return SearchResponse(outcomes=outcomes, search_time_ms=round(elapsed, 1))
