#!/usr/bin/env python3
"""Run an ad-hoc semantic query against the case collection.

Usage:
    python scripts/query.py 北京动物保护
    python scripts/query.py "合同纠纷 违约金" --top-k 10 --approximate
"""

import argparse
import asyncio
import logging

from qdrant_client import AsyncQdrantClient

from vsearch.config import settings
from vsearch.services.factory import build_pipeline

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
logger = logging.getLogger(__name__)


async def main(queries: list[str], top_k: int, exact: bool, show_vector: bool) -> None:
    qdrant_client = AsyncQdrantClient(**settings.qdrant_kwargs())
    pipeline = build_pipeline(settings, qdrant_client)
    try:
        await pipeline.start()

        if show_vector:
            vectors = await asyncio.to_thread(pipeline.encoder.encode, queries)
            for query, vector in zip(queries, vectors.tolist()):
                print(f"{query}: {vector}")

        outcomes = await pipeline.search_many(queries, top_k=top_k, exact=exact)
        for outcome in outcomes:
            print(f"== {outcome.query}")
            if not outcome.ok:
                print(f"  error: {outcome.error}")
                continue
            for result in outcome.results:
                name = result.payload.get("case_name", "")
                print(f"  {result.id}\t{result.score:.4f}\t{name}")
    finally:
        await qdrant_client.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Query the vsearch collection")
    parser.add_argument("queries", nargs="+", help="Query text(s)")
    parser.add_argument("--top-k", type=int, default=30)
    parser.add_argument(
        "--approximate",
        action="store_true",
        help="Use the HNSW index instead of exact (brute-force) search",
    )
    parser.add_argument("--show-vector", action="store_true", help="Print the query embeddings")
    args = parser.parse_args()

    asyncio.run(main(args.queries, args.top_k, not args.approximate, args.show_vector))
