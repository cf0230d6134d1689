#!/usr/bin/env python3
"""Bulk-index a JSON-lines dump of court judgments.

Only criminal cases (案件类型 == 刑事案件) with a non-empty full text are
indexed.  Each line's ``id`` field (or its 1-based line number) is the record
id.  After every batch the index stored, its last id is written to a
progress file and the next run resumes after it.  A batch the index did not
store holds the checkpoint there until a later run gets it in.

Usage:
    python scripts/index_cases.py
    python scripts/index_cases.py --cases data/cases.jsonl --batch-size 128
    python scripts/index_cases.py --progress 0    # start over
"""

import argparse
import asyncio
import json
import logging
from collections.abc import Iterator
from pathlib import Path

from pydantic import ValidationError
from qdrant_client import AsyncQdrantClient
from tqdm import tqdm

from vsearch.config import settings
from vsearch.models.domain import Case, IndexReport, RecordFailure, RecordId, TextRecord
from vsearch.services.factory import build_pipeline
from vsearch.services.pipeline import EmbeddingPipeline
from vsearch.services.preprocessor import strip_html

logger = logging.getLogger(__name__)

CRIMINAL_CASE = "刑事案件"
LOG_EVERY = 10000
# Failures that mean the record never reached the index.
LOST_REASONS = ("index_unavailable", "dimension_mismatch")


def load_progress(path: Path) -> int:
    """Return the last indexed id recorded in *path*, or 0."""
    if not path.exists():
        return 0
    return int(json.loads(path.read_text(encoding="utf-8")).get("progress", 0))


def save_progress(path: Path, last_id: int) -> None:
    path.write_text(json.dumps({"progress": last_id}), encoding="utf-8")


def iter_cases(path: Path, after: int = 0) -> Iterator[tuple[int, Case]]:
    """Yield ``(id, case)`` for every parseable line with id > *after*."""
    with path.open(encoding="utf-8") as fh:
        for line_no, line in enumerate(fh, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                raw = json.loads(line)
                case_id = int(raw.pop("id", line_no))
                case = Case.model_validate(raw)
            except (json.JSONDecodeError, ValidationError, ValueError) as e:
                logger.warning("Skipping malformed line %d: %s", line_no, e)
                continue
            if case_id % LOG_EVERY == 0:
                logger.info("Scanned up to id %d", case_id)
            if case_id <= after:
                continue
            yield case_id, case


def iter_records(path: Path, after: int = 0) -> Iterator[TextRecord]:
    """Criminal cases with text, as records ready for the pipeline."""
    for case_id, case in iter_cases(path, after):
        if case.case_type != CRIMINAL_CASE or not case.full_text:
            continue
        text = strip_html(case.full_text)
        if not text:
            continue
        yield TextRecord(id=case_id, text=text, payload=case.summary_payload())


class Checkpoint:
    """Tracks the last id up to which every record is stored.

    The checkpoint advances after each batch the index accepted.  Once a
    batch is lost to the index (unreachable, or a dimension mismatch) it
    stops advancing, so the next run resumes at that batch.  Records
    re-sent on resume are upserted again, which is harmless.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self.stuck_at: RecordId | None = None

    def advance(self, batch: list[TextRecord], failures: list[RecordFailure]) -> None:
        if self.stuck_at is not None:
            return
        lost = [f.id for f in failures if f.reason in LOST_REASONS]
        if lost:
            self.stuck_at = lost[0]
            logger.warning("Checkpoint held before case %s; the next run resumes there.", lost[0])
            return
        save_progress(self.path, int(batch[-1].id))


async def index_cases(
    pipeline: EmbeddingPipeline, cases: Path, progress_file: Path, start_after: int = 0
) -> IndexReport:
    """Index every criminal case after *start_after*, checkpointing to *progress_file*."""
    checkpoint = Checkpoint(progress_file)
    pbar = tqdm(desc="Indexing cases", unit="case")
    seen_failures = 0

    def on_batch(batch: list[TextRecord], report: IndexReport) -> None:
        nonlocal seen_failures
        new_failures = report.failures[seen_failures:]
        seen_failures = len(report.failures)
        pbar.update(len(batch))
        pbar.set_postfix(indexed=report.indexed, failed=report.failed, refresh=False)

        for failure in new_failures:
            logger.warning("Case %s failed (%s): %s", failure.id, failure.reason, failure.error)
        checkpoint.advance(batch, new_failures)

    try:
        return await pipeline.index_records(iter_records(cases, start_after), on_batch=on_batch)
    finally:
        pbar.close()


async def main(cases_path: str, progress_path: str, progress: int | None, batch_size: int):
    progress_file = Path(progress_path)
    start_after = progress if progress is not None else load_progress(progress_file)
    logger.info("Resuming after id %d (batch size %d).", start_after, batch_size)

    qdrant_client = AsyncQdrantClient(**settings.qdrant_kwargs())
    try:
        pipeline = build_pipeline(settings, qdrant_client, batch_size=batch_size)
        await pipeline.start()
        report = await index_cases(pipeline, Path(cases_path), progress_file, start_after)
    finally:
        await qdrant_client.close()

    logger.info(
        "All done: %d cases, %d indexed, %d failed in %d batches%s.",
        report.total,
        report.indexed,
        report.failed,
        report.batches,
        " (halted)" if report.halted else "",
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    logging.getLogger("httpx").setLevel(logging.WARNING)

    parser = argparse.ArgumentParser(description="Index court judgments into Qdrant")
    parser.add_argument("--cases", default=settings.cases_path, help="JSON-lines case dump")
    parser.add_argument("--progress-file", default=settings.progress_path)
    parser.add_argument(
        "--progress",
        type=int,
        default=None,
        help="Resume after this id instead of the saved checkpoint",
    )
    parser.add_argument("--batch-size", type=int, default=settings.batch_size)
    args = parser.parse_args()

    asyncio.run(main(args.cases, args.progress_file, args.progress, args.batch_size))
