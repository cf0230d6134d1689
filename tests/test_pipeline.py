"""Tests for the EmbeddingPipeline.

Uses the character-bag fake encoder and Qdrant in-memory mode.
"""

import asyncio
from unittest.mock import AsyncMock

import httpx
import pytest
from conftest import BAD_MARKER, CharBagEncoder, make_store
from qdrant_client.models import Distance

from vsearch.errors import ConfigError, DimensionMismatch
from vsearch.models.domain import TextRecord
from vsearch.models.variants import build_model_config
from vsearch.services.pipeline import EmbeddingPipeline
from vsearch.services.vector_store import RECORD_ID_KEY, VectorStore

APPLES = [
    TextRecord(id=1, text="红苹果"),
    TextRecord(id=2, text="绿苹果"),
    TextRecord(id=3, text="法律合同"),
]


@pytest.fixture
async def pipeline(encoder, vector_store):
    pipeline = EmbeddingPipeline(encoder, vector_store, batch_size=2)
    await pipeline.start()
    return pipeline


# --- startup validation ---


async def test_start_fails_on_dimension_mismatch():
    """A 512-d model bound to a 1024-d collection fails before any data request."""
    store = await make_store(dimension=1024)
    store.client.upsert = AsyncMock()
    store.client.query_points = AsyncMock()

    pipeline = EmbeddingPipeline(CharBagEncoder(), store)
    with pytest.raises(ConfigError, match="1024"):
        await pipeline.start()

    store.client.upsert.assert_not_awaited()
    store.client.query_points.assert_not_awaited()


async def test_start_requires_normalisation_for_dot_distance():
    store = await make_store(distance=Distance.DOT)
    encoder = CharBagEncoder(build_model_config("BGESmallZHV15", normalize=False))
    with pytest.raises(ConfigError, match="Dot"):
        await EmbeddingPipeline(encoder, store).start()


async def test_start_allows_cosine_without_client_normalisation():
    store = await make_store(distance=Distance.COSINE)
    encoder = CharBagEncoder(build_model_config("BGESmallZHV15", normalize=False))
    await EmbeddingPipeline(encoder, store).start()


async def test_operations_require_start(encoder, vector_store):
    pipeline = EmbeddingPipeline(encoder, vector_store)
    with pytest.raises(ConfigError, match="not started"):
        await pipeline.search("苹果")


def test_invalid_batch_size(encoder, vector_store):
    with pytest.raises(ConfigError):
        EmbeddingPipeline(encoder, vector_store, batch_size=0)


# --- index mode ---


async def test_index_records(pipeline: EmbeddingPipeline, vector_store: VectorStore):
    report = await pipeline.index_records(APPLES)

    assert report.total == 3
    assert report.indexed == 3
    assert report.failed == 0
    assert report.batches == 2
    assert await vector_store.count() == 3


async def test_one_upsert_per_batch(pipeline: EmbeddingPipeline, vector_store: VectorStore):
    real_upsert = vector_store.client.upsert
    vector_store.client.upsert = AsyncMock(side_effect=real_upsert)

    records = [TextRecord(id=i, text=f"文本{i}") for i in range(5)]
    await pipeline.index_records(records)

    assert vector_store.client.upsert.await_count == 3
    sizes = [len(call.kwargs["points"]) for call in vector_store.client.upsert.await_args_list]
    assert sizes == [2, 2, 1]


async def test_index_accepts_lazy_generators_and_async_iterables(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    report = await pipeline.index_records(r for r in APPLES)
    assert report.indexed == 3

    async def agen():
        for i in range(10, 13):
            yield TextRecord(id=i, text=f"案件{i}")

    report = await pipeline.index_records(agen())
    assert report.indexed == 3
    assert await vector_store.count() == 6


async def test_blank_text_fails_only_that_record(pipeline: EmbeddingPipeline):
    records = [TextRecord(id=1, text="红苹果"), TextRecord(id=2, text="   ")]
    report = await pipeline.index_records(records)

    assert report.indexed == 1
    assert report.failed == 1
    assert report.failures[0].id == 2
    assert report.failures[0].reason == "empty_text"


async def test_reserved_payload_key_fails_only_that_record(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    records = [
        TextRecord(id=1, text="红苹果", payload={"record_id": "user value"}),
        TextRecord(id=2, text="绿苹果", payload={RECORD_ID_KEY: "clash"}),
    ]
    report = await pipeline.index_records(records)

    assert report.indexed == 1
    assert report.failed_ids == [2]
    assert report.failures[0].reason == "invalid_payload"
    assert await vector_store.count() == 1


async def test_malformed_record_isolated_from_batch(
    pipeline: EmbeddingPipeline, encoder: CharBagEncoder, vector_store: VectorStore
):
    records = [TextRecord(id=1, text="红苹果"), TextRecord(id=2, text=f"坏{BAD_MARKER}")]
    report = await pipeline.index_records(records)

    assert report.indexed == 1
    assert report.failed_ids == [2]
    assert report.failures[0].reason == "inference"
    # one failed batch call, then one call per record
    assert len(encoder.calls) == 3
    assert await vector_store.count() == 1


async def test_index_unavailable_fails_batch_and_continues(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    real_upsert = vector_store.client.upsert

    async def flaky(**kwargs):
        if flaky.calls == 0:
            flaky.calls += 1
            raise httpx.ConnectError("down")
        return await real_upsert(**kwargs)

    flaky.calls = 0
    vector_store.client.upsert = flaky

    report = await pipeline.index_records(APPLES)

    assert report.indexed == 1
    assert sorted(report.failed_ids) == [1, 2]
    assert {f.reason for f in report.failures} == {"index_unavailable"}
    assert report.halted is False
    assert await vector_store.count() == 1


async def test_dimension_mismatch_halts_session(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    # The collection is re-provisioned behind the pipeline's back.
    vector_store.info = vector_store.info.model_copy(update={"dimension": 1024})

    report = await pipeline.index_records(APPLES)

    assert report.halted is True
    assert report.batches == 1
    assert report.failed_ids == [1, 2]
    assert report.failures[0].reason == "dimension_mismatch"

    with pytest.raises(DimensionMismatch):
        await pipeline.index_records(APPLES)
    with pytest.raises(DimensionMismatch):
        await pipeline.search("苹果")


async def test_reindexing_is_idempotent(pipeline: EmbeddingPipeline, vector_store: VectorStore):
    await pipeline.index_records(APPLES)
    assert (await pipeline.search("法律合同", top_k=1))[0].id == 3

    await pipeline.index_records([TextRecord(id=3, text="苹果派")])

    assert await vector_store.count() == 3
    assert (await pipeline.search("苹果派", top_k=1))[0].id == 3
    # nothing left that shares a character with the old text
    assert (await pipeline.search("法律合同", top_k=1))[0].score == pytest.approx(0.0, abs=1e-6)


# --- query mode ---


async def test_apple_query_ranks_apples_first(pipeline: EmbeddingPipeline):
    await pipeline.index_records(APPLES)

    results = await pipeline.search("苹果", top_k=2)
    assert {r.id for r in results} == {1, 2}

    everything = await pipeline.search("苹果", top_k=3)
    assert everything[-1].id == 3
    scores = [r.score for r in everything]
    assert scores == sorted(scores, reverse=True)


async def test_search_empty_collection(pipeline: EmbeddingPipeline):
    assert await pipeline.search("苹果", top_k=5) == []


async def test_search_with_payload_filter(pipeline: EmbeddingPipeline):
    await pipeline.index_records(
        [
            TextRecord(id=1, text="红苹果", payload={"court": "A"}),
            TextRecord(id=2, text="绿苹果", payload={"court": "B"}),
        ]
    )
    results = await pipeline.search("苹果", top_k=5, filter={"court": "B"})
    assert [r.id for r in results] == [2]
    assert results[0].payload == {"court": "B"}


async def test_search_many_preserves_order(pipeline: EmbeddingPipeline):
    await pipeline.index_records(APPLES)

    outcomes = await pipeline.search_many(["法律合同", "红苹果"], top_k=1)
    assert [o.query for o in outcomes] == ["法律合同", "红苹果"]
    assert outcomes[0].results[0].id == 3
    assert outcomes[1].results[0].id == 1
    assert all(o.ok for o in outcomes)


async def test_search_many_isolates_failures(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    await pipeline.index_records(APPLES)

    outcomes = await pipeline.search_many(["红苹果", BAD_MARKER, "  "], top_k=1)

    assert outcomes[0].ok
    assert outcomes[0].results[0].id == 1
    assert outcomes[1].error == "malformed input"
    assert outcomes[2].error == "Query text is empty"


async def test_search_many_reports_unavailable_index(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    vector_store.client.query_points = AsyncMock(side_effect=httpx.ConnectError("down"))

    outcomes = await pipeline.search_many(["红苹果", "法律"], top_k=1)
    assert all(not o.ok for o in outcomes)
    assert all("down" in o.error for o in outcomes)


async def test_search_many_dimension_mismatch_cancels_other_queries(
    pipeline: EmbeddingPipeline, vector_store: VectorStore
):
    cancelled = []
    calls = 0

    async def search(*args, **kwargs):
        nonlocal calls
        calls += 1
        if calls == 3:
            raise DimensionMismatch(512, 1024)
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(calls)
            raise
        return []

    vector_store.search = search

    with pytest.raises(DimensionMismatch):
        await pipeline.search_many(["红苹果", "绿苹果", "法律合同"], top_k=1)
    assert len(cancelled) == 2
