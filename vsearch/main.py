"""FastAPI application entry point with lifespan management."""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from qdrant_client import AsyncQdrantClient

from vsearch.api.routes import router as api_router
from vsearch.config import settings
from vsearch.errors import ConfigError, DimensionMismatch, IndexUnavailable, InferenceError
from vsearch.models.schemas import HealthResponse
from vsearch.services.factory import build_pipeline
from vsearch.services.pipeline import EmbeddingPipeline

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the model and bind the collection on startup, clean up on shutdown."""
    logger.info("Initializing services...")

    qdrant_client = AsyncQdrantClient(**settings.qdrant_kwargs())
    pipeline = build_pipeline(settings, qdrant_client)
    await pipeline.start()

    app.state.qdrant_client = qdrant_client
    app.state.vector_store = pipeline.vector_store
    app.state.pipeline = pipeline

    logger.info("All services initialized.")
    yield

    logger.info("Shutting down services...")
    await qdrant_client.close()
    logger.info("Services shut down.")


app = FastAPI(title="vsearch", version="0.1.0", lifespan=lifespan)
app.include_router(api_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log request method, path, and response time."""
    start = time.monotonic()
    response = await call_next(request)
    elapsed = (time.monotonic() - start) * 1000
    logger.info(
        "%s %s %d (%.1fms)", request.method, request.url.path, response.status_code, elapsed
    )
    return response


_ERROR_STATUS: dict[type[Exception], int] = {
    DimensionMismatch: 409,
    IndexUnavailable: 503,
    InferenceError: 422,
    ConfigError: 500,
}


async def pipeline_exception_handler(request: Request, exc: Exception):
    """Map pipeline errors to status codes with the error message as detail."""
    status = next(code for cls, code in _ERROR_STATUS.items() if isinstance(exc, cls))
    logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc)})


for _error in _ERROR_STATUS:
    app.add_exception_handler(_error, pipeline_exception_handler)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Return clean JSON for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


@app.get("/api/health", response_model=HealthResponse)
async def health():
    """Health check endpoint."""
    pipeline: EmbeddingPipeline = app.state.pipeline
    qdrant_connected = True
    try:
        indexed_records = await app.state.vector_store.count()
    except Exception:
        indexed_records = 0
        qdrant_connected = False

    return HealthResponse(
        status="ok" if qdrant_connected else "degraded",
        collection_name=app.state.vector_store.collection_name,
        indexed_records=indexed_records,
        qdrant_connected=qdrant_connected,
        model=pipeline.config.model_name,
        dimension=pipeline.config.dimension,
    )
