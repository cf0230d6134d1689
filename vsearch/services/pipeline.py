"""Embedding pipeline that orchestrates tokenizing, encoding, and storage.

Two flows share one encoder and one vector store:

* index mode: records → batches → encode → one upsert per batch
* query mode: queries → encode → concurrent searches → ranked results
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable, Sequence
from typing import Any, Protocol

import numpy as np

from vsearch.errors import (
    ConfigError,
    DimensionMismatch,
    InferenceError,
    IndexUnavailable,
)
from vsearch.models.domain import (
    IndexReport,
    QueryOutcome,
    RecordFailure,
    SearchResult,
    TextRecord,
)
from vsearch.models.variants import ModelConfig
from vsearch.services.preprocessor import is_blank
from vsearch.services.vector_store import RECORD_ID_KEY, VectorStore

logger = logging.getLogger(__name__)


class Encoder(Protocol):
    config: ModelConfig

    def encode(self, texts: Sequence[str]) -> np.ndarray: ...


async def _batched(
    records: Iterable[TextRecord] | AsyncIterable[TextRecord], size: int
) -> AsyncIterator[list[TextRecord]]:
    """Group a sync or async record stream into lists of at most *size*."""
    batch: list[TextRecord] = []
    if isinstance(records, AsyncIterable):
        async for record in records:
            batch.append(record)
            if len(batch) >= size:
                yield batch
                batch = []
    else:
        for record in records:
            batch.append(record)
            if len(batch) >= size:
                yield batch
                batch = []
    if batch:
        yield batch


class EmbeddingPipeline:
    def __init__(
        self,
        encoder: Encoder,
        vector_store: VectorStore,
        batch_size: int = 64,
        max_concurrency: int = 2,
    ) -> None:
        if batch_size <= 0:
            raise ConfigError(f"batch_size must be positive, got {batch_size}")
        self.encoder = encoder
        self.vector_store = vector_store
        self.batch_size = batch_size
        self._encode_slots = asyncio.Semaphore(max(1, max_concurrency))
        self._halted: DimensionMismatch | None = None
        self._started = False

    @property
    def config(self) -> ModelConfig:
        return self.encoder.config

    async def start(self) -> None:
        """Validate the model against the bound collection before serving anything.

        Raises:
            ConfigError: dimensionality differs, or the metric needs
                normalised vectors and normalisation is off.
        """
        info = await self.vector_store.describe()
        if info.dimension != self.config.dimension:
            raise ConfigError(
                f"Model '{self.config.model_name}' produces {self.config.dimension}-d vectors "
                f"but collection '{info.name}' stores {info.dimension}-d vectors"
            )
        if info.distance == "Dot" and not self.config.normalize:
            raise ConfigError(
                f"Collection '{info.name}' uses Dot distance; enable normalize_embeddings "
                f"so scores match cosine similarity"
            )
        if info.distance == "Cosine" and not self.config.normalize:
            logger.info("Client-side normalisation off; Qdrant normalises Cosine vectors itself.")
        self._started = True
        logger.info(
            "Pipeline ready: model=%s dim=%d collection=%s distance=%s batch_size=%d",
            self.config.model_name,
            self.config.dimension,
            info.name,
            info.distance,
            self.batch_size,
        )

    def _check_ready(self) -> None:
        if not self._started:
            raise ConfigError("Pipeline not started; call start() first")
        if self._halted is not None:
            raise self._halted

    async def _encode(self, texts: Sequence[str]) -> np.ndarray:
        """Encode off the event loop, bounded by the concurrency limit."""
        async with self._encode_slots:
            return await asyncio.to_thread(self.encoder.encode, list(texts))

    async def _encode_isolating(
        self, batch: list[TextRecord], failures: list[RecordFailure]
    ) -> list[tuple[TextRecord, list[float]]]:
        """Encode a batch; on failure fall back to one record at a time.

        Records that still fail are appended to *failures*.
        """
        try:
            vectors = await self._encode([r.text for r in batch])
            return list(zip(batch, vectors.tolist()))
        except InferenceError as exc:
            if len(batch) == 1:
                failures.append(RecordFailure(id=batch[0].id, reason="inference", error=str(exc)))
                return []
            logger.warning("Batch encode failed (%s); retrying %d records singly.", exc, len(batch))

        encoded: list[tuple[TextRecord, list[float]]] = []
        for record in batch:
            try:
                vector = await self._encode([record.text])
            except InferenceError as exc:
                failures.append(RecordFailure(id=record.id, reason="inference", error=str(exc)))
                continue
            encoded.append((record, vector[0].tolist()))
        return encoded

    async def _index_batch(self, batch: list[TextRecord], report: IndexReport) -> None:
        failures: list[RecordFailure] = []
        valid: list[TextRecord] = []
        for record in batch:
            if is_blank(record.text):
                failures.append(RecordFailure(id=record.id, reason="empty_text"))
            elif RECORD_ID_KEY in record.payload:
                failures.append(
                    RecordFailure(
                        id=record.id,
                        reason="invalid_payload",
                        error=f"payload key '{RECORD_ID_KEY}' is reserved",
                    )
                )
            else:
                valid.append(record)

        encoded = await self._encode_isolating(valid, failures) if valid else []

        if encoded:
            try:
                await self.vector_store.upsert_many(
                    [(record.id, vector, record.payload) for record, vector in encoded]
                )
            except IndexUnavailable as exc:
                failures.extend(
                    RecordFailure(id=record.id, reason="index_unavailable", error=str(exc))
                    for record, _ in encoded
                )
                encoded = []
            except DimensionMismatch as exc:
                failures.extend(
                    RecordFailure(id=record.id, reason="dimension_mismatch", error=str(exc))
                    for record, _ in encoded
                )
                self._halted = exc
                encoded = []

        report.total += len(batch)
        report.indexed += len(encoded)
        report.failed += len(failures)
        report.failures.extend(failures)
        report.batches += 1

    async def index_records(
        self,
        records: Iterable[TextRecord] | AsyncIterable[TextRecord],
        on_batch: Callable[[list[TextRecord], IndexReport], Any] | None = None,
    ) -> IndexReport:
        """Embed and upsert *records*, one index request per batch.

        Per-record problems (blank text, a reserved payload key, encoder
        rejects the text) fail only that record.  An unreachable index fails the whole batch and moves
        on.  A dimension mismatch fails the batch and halts the session:
        the report comes back with ``halted=True`` and later calls raise.
        """
        self._check_ready()
        report = IndexReport()
        started = time.monotonic()

        async for batch in _batched(records, self.batch_size):
            await self._index_batch(batch, report)
            logger.info(
                "batch=%d records=%d indexed=%d failed=%d elapsed=%.1fs",
                report.batches,
                report.total,
                report.indexed,
                report.failed,
                time.monotonic() - started,
            )
            if on_batch is not None:
                on_batch(batch, report)
            if self._halted is not None:
                report.halted = True
                logger.error("Indexing halted: %s", self._halted)
                break

        return report

    async def search(
        self,
        query: str,
        top_k: int = 10,
        filter: Any = None,
        *,
        exact: bool = False,
    ) -> list[SearchResult]:
        """Embed one query and return its ranked neighbours."""
        self._check_ready()
        if is_blank(query):
            raise InferenceError("Query text is empty")
        vectors = await self._encode([query])
        return await self.vector_store.search(vectors[0].tolist(), top_k, filter, exact=exact)

    async def search_many(
        self,
        queries: Sequence[str],
        top_k: int = 10,
        filter: Any = None,
        *,
        exact: bool = False,
    ) -> list[QueryOutcome]:
        """Run several queries; results come back in input order.

        A failing query yields an outcome with ``error`` set; the others are
        unaffected.  Dimension mismatches are not isolated: the first one
        cancels the remaining searches and is raised.
        """
        self._check_ready()
        outcomes = [QueryOutcome(query=q) for q in queries]
        pending: list[int] = []
        for i, q in enumerate(queries):
            if is_blank(q):
                outcomes[i].error = "Query text is empty"
            else:
                pending.append(i)
        if not pending:
            return outcomes

        try:
            vectors = await self._encode([queries[i] for i in pending])
        except InferenceError:
            vectors = None

        async def _one(slot: int) -> None:
            i = pending[slot]
            try:
                if vectors is None:
                    vector = (await self._encode([queries[i]]))[0]
                else:
                    vector = vectors[slot]
                outcomes[i].results = await self.vector_store.search(
                    vector.tolist(), top_k, filter, exact=exact
                )
            except (InferenceError, IndexUnavailable) as exc:
                outcomes[i].error = str(exc)

        try:
            async with asyncio.TaskGroup() as group:
                for slot in range(len(pending)):
                    group.create_task(_one(slot))
        except ExceptionGroup as exc:
            raise exc.exceptions[0]
        return outcomes
