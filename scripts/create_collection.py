#!/usr/bin/env python3
"""Provision the Qdrant collection for the configured embedding model.

The pipeline never creates collections itself; run this once per deployment.

Usage:
    python scripts/create_collection.py
    python scripts/create_collection.py --distance Dot
    python scripts/create_collection.py --collection cases_large --model BGELargeZHV15
"""

import argparse
import asyncio
import logging

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    ScalarQuantization,
    ScalarQuantizationConfig,
    ScalarType,
    VectorParams,
)

from vsearch.config import settings
from vsearch.models.variants import resolve_variant

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def create_collection(
    client: AsyncQdrantClient,
    collection: str,
    dimension: int,
    distance: Distance = Distance.COSINE,
    vector_name: str = "",
    quantize: bool = False,
) -> bool:
    """Create *collection* if it does not exist. Returns True when created."""
    if await client.collection_exists(collection):
        logger.info("Collection '%s' already exists, skipping creation.", collection)
        return False

    params = VectorParams(size=dimension, distance=distance)
    await client.create_collection(
        collection_name=collection,
        vectors_config={vector_name: params} if vector_name else params,
        quantization_config=(
            ScalarQuantization(
                scalar=ScalarQuantizationConfig(type=ScalarType.INT8, always_ram=True),
            )
            if quantize
            else None
        ),
    )
    logger.info(
        "Created collection '%s' (dim=%d, distance=%s).", collection, dimension, distance.value
    )
    return True


async def main(collection: str, model: str, distance: str, quantize: bool) -> None:
    dimension = resolve_variant(model).spec.dimension
    client = AsyncQdrantClient(**settings.qdrant_kwargs())
    try:
        await create_collection(
            client,
            collection,
            dimension,
            Distance(distance),
            vector_name=settings.vector_name,
            quantize=quantize,
        )
    finally:
        await client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the vsearch Qdrant collection")
    parser.add_argument("--collection", default=settings.collection_name)
    parser.add_argument("--model", default=settings.embedding_model, help="Model variant")
    parser.add_argument(
        "--distance",
        default="Cosine",
        choices=[d.value for d in Distance],
        help="Distance metric fixed at creation time",
    )
    parser.add_argument("--quantize", action="store_true", help="Enable int8 scalar quantization")
    args = parser.parse_args()

    asyncio.run(main(args.collection, args.model, args.distance, args.quantize))
