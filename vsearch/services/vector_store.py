"""Vector store service wrapping a single Qdrant collection.

The collection is provisioned out of band (see ``scripts/create_collection.py``);
this client only reads its parameters, upserts points and queries them.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

import grpc
from qdrant_client import AsyncQdrantClient
from qdrant_client.http.exceptions import UnexpectedResponse
from qdrant_client.models import (
    FieldCondition,
    Filter,
    MatchAny,
    MatchValue,
    PointStruct,
    SearchParams,
    VectorParams,
)

from vsearch.errors import ConfigError, DimensionMismatch, IndexUnavailable
from vsearch.models.domain import CollectionInfo, RecordId, SearchResult
from vsearch.services.retry import RetryPolicy, is_transient

logger = logging.getLogger(__name__)

RECORD_ID_KEY = "_vsearch_record_id"
_ID_NAMESPACE = uuid.UUID("6f1c1d3e-8a52-4c0b-9d55-0b1c4c2f7a10")


def to_point_id(record_id: RecordId) -> tuple[int | str, bool]:
    """Map a record id to a Qdrant point id.

    Returns ``(point_id, mapped)``.  Non-negative ints and UUID strings
    already in canonical form (lowercase, hyphenated) are used verbatim.
    Any other id, including a UUID spelled differently, becomes a
    deterministic UUIDv5 and ``mapped`` is True so the caller keeps the
    original in the payload.
    """
    if isinstance(record_id, int) and not isinstance(record_id, bool) and record_id >= 0:
        return record_id, False
    text = str(record_id)
    try:
        canonical = str(uuid.UUID(text))
    except ValueError:
        canonical = None
    if canonical == text:
        return text, False
    return str(uuid.uuid5(_ID_NAMESPACE, text)), True


def build_filter(filter: Filter | Mapping[str, Any] | None) -> Filter | None:
    """Accept a Qdrant ``Filter`` or a ``{key: value}`` exact-match mapping.

    A list value matches any of its elements.
    """
    if filter is None or isinstance(filter, Filter):
        return filter
    conditions = []
    for key, value in filter.items():
        if isinstance(value, (list, tuple, set)):
            conditions.append(FieldCondition(key=key, match=MatchAny(any=list(value))))
        else:
            conditions.append(FieldCondition(key=key, match=MatchValue(value=value)))
    return Filter(must=conditions) if conditions else None


def _is_dimension_error(exc: Exception) -> bool:
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code == 400 and b"dimension" in (exc.content or b"").lower()
    if isinstance(exc, grpc.RpcError) and callable(getattr(exc, "details", None)):
        return "dimension" in (exc.details() or "").lower()
    return isinstance(exc, ValueError) and "dimension" in str(exc).lower()


def _is_not_found(exc: Exception) -> bool:
    if isinstance(exc, UnexpectedResponse):
        return exc.status_code == 404
    if isinstance(exc, grpc.RpcError) and callable(getattr(exc, "code", None)):
        return exc.code() == grpc.StatusCode.NOT_FOUND
    # Local (in-memory) mode raises ValueError("Collection ... not found")
    return isinstance(exc, ValueError) and "not found" in str(exc).lower()


class VectorStore:
    """Upserts and searches embedding vectors in one Qdrant collection."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        collection_name: str = "cases",
        *,
        retry_policy: RetryPolicy | None = None,
        vector_name: str | None = None,
    ) -> None:
        self.client = client
        self.collection_name = collection_name
        self.retry_policy = retry_policy or RetryPolicy()
        self.vector_name = vector_name or None
        self.info: CollectionInfo | None = None

    @property
    def dimension(self) -> int | None:
        return self.info.dimension if self.info else None

    async def _call(self, func, *, description: str, ids: Sequence[RecordId] = ()):
        """Run a client call under the retry policy, mapping transport failures."""
        try:
            return await self.retry_policy.call(func, description=description)
        except Exception as exc:
            if is_transient(exc):
                raise IndexUnavailable(
                    f"{description} on '{self.collection_name}' failed: {exc}", ids=ids
                ) from exc
            raise

    async def describe(self) -> CollectionInfo:
        """Read the collection's fixed dimensionality and distance metric.

        Raises:
            ConfigError: the collection does not exist or its vector layout
                does not match ``vector_name``.
            IndexUnavailable: the server could not be reached.
        """
        try:
            info = await self._call(
                lambda: self.client.get_collection(self.collection_name),
                description="get_collection",
            )
        except IndexUnavailable:
            raise
        except Exception as exc:
            if _is_not_found(exc):
                raise ConfigError(
                    f"Collection '{self.collection_name}' does not exist; provision it first."
                ) from exc
            raise

        vectors = info.config.params.vectors
        if isinstance(vectors, VectorParams):
            if self.vector_name:
                raise ConfigError(
                    f"Collection '{self.collection_name}' has a single unnamed vector, "
                    f"but vector_name='{self.vector_name}' is configured"
                )
            params = vectors
        elif isinstance(vectors, Mapping) and self.vector_name in vectors:
            params = vectors[self.vector_name]
        else:
            names = sorted(vectors) if isinstance(vectors, Mapping) else []
            raise ConfigError(
                f"Collection '{self.collection_name}' has named vectors {names}; "
                f"set vector_name to one of them"
            )

        distance = params.distance.value if hasattr(params.distance, "value") else params.distance
        self.info = CollectionInfo(
            name=self.collection_name,
            dimension=params.size,
            distance=str(distance),
            points_count=info.points_count,
        )
        logger.info(
            "Bound collection '%s' (dim=%d, distance=%s, points=%s).",
            self.collection_name,
            self.info.dimension,
            self.info.distance,
            self.info.points_count,
        )
        return self.info

    async def _expected_dimension(self) -> int:
        if self.info is None:
            await self.describe()
        return self.info.dimension  # type: ignore[union-attr]

    async def upsert(
        self, record_id: RecordId, vector: Sequence[float], payload: dict | None = None
    ) -> None:
        """Insert or replace one point."""
        await self.upsert_many([(record_id, vector, payload or {})])

    async def upsert_many(
        self, points: Sequence[tuple[RecordId, Sequence[float], dict | None]]
    ) -> None:
        """Insert or replace a batch of points in a single request.

        Every vector is checked against the collection dimensionality before
        anything is sent, so a bad batch leaves the collection unchanged.
        Payloads may not use the reserved key ``_vsearch_record_id``.
        """
        if not points:
            return
        expected = await self._expected_dimension()
        ids = [record_id for record_id, _, _ in points]

        structs: list[PointStruct] = []
        for record_id, vector, payload in points:
            vector = [float(x) for x in vector]
            if len(vector) != expected:
                raise DimensionMismatch(
                    expected,
                    len(vector),
                    f"record {record_id!r}: vector dimension {len(vector)} "
                    f"does not match collection dimension {expected}",
                )
            if payload and RECORD_ID_KEY in payload:
                raise ValueError(f"record {record_id!r}: payload key '{RECORD_ID_KEY}' is reserved")
            point_id, mapped = to_point_id(record_id)
            body = dict(payload or {})
            if mapped:
                body[RECORD_ID_KEY] = record_id
            structs.append(
                PointStruct(
                    id=point_id,
                    vector={self.vector_name: vector} if self.vector_name else vector,
                    payload=body,
                )
            )

        try:
            await self._call(
                lambda: self.client.upsert(
                    collection_name=self.collection_name, points=structs, wait=True
                ),
                description=f"upsert of {len(structs)} points",
                ids=ids,
            )
        except IndexUnavailable:
            raise
        except Exception as exc:
            if _is_dimension_error(exc):
                raise DimensionMismatch(expected, -1, f"index rejected vector dimension: {exc}") from exc
            raise
        logger.debug("Upserted %d points into '%s'.", len(structs), self.collection_name)

    async def search(
        self,
        vector: Sequence[float],
        top_k: int = 10,
        filter: Filter | Mapping[str, Any] | None = None,
        *,
        exact: bool = False,
    ) -> list[SearchResult]:
        """Return up to *top_k* nearest neighbours, best first.

        An empty collection yields an empty list.
        """
        if top_k <= 0:
            return []
        expected = await self._expected_dimension()
        vector = [float(x) for x in vector]
        if len(vector) != expected:
            raise DimensionMismatch(expected, len(vector))

        try:
            response = await self._call(
                lambda: self.client.query_points(
                    collection_name=self.collection_name,
                    query=vector,
                    using=self.vector_name,
                    limit=top_k,
                    query_filter=build_filter(filter),
                    search_params=SearchParams(exact=True) if exact else None,
                    with_payload=True,
                ),
                description="query_points",
            )
        except IndexUnavailable:
            raise
        except Exception as exc:
            if _is_dimension_error(exc):
                raise DimensionMismatch(expected, len(vector), str(exc)) from exc
            raise

        results: list[SearchResult] = []
        for point in response.points:
            payload = dict(point.payload or {})
            record_id = payload.pop(RECORD_ID_KEY, point.id)
            results.append(SearchResult(id=record_id, score=point.score, payload=payload))
        return results

    async def count(self) -> int:
        """Number of points currently stored in the collection."""
        result = await self._call(
            lambda: self.client.count(collection_name=self.collection_name, exact=True),
            description="count",
        )
        return result.count
