import logging

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    # Qdrant
    qdrant_host: str = "localhost"
    qdrant_port: int = 6333
    qdrant_grpc_port: int = 6334
    qdrant_prefer_grpc: bool = False
    qdrant_api_key: str = ""
    qdrant_url: str = ""
    qdrant_timeout: int = 30
    collection_name: str = "cases"
    vector_name: str = ""

    # Embedding
    embedding_model: str = "BGESmallZHV15"
    tokenizer_name: str = ""
    embedding_device: str = "cpu"
    max_seq_length: int | None = None
    pad_to_max_length: bool = False
    normalize_embeddings: bool = True

    # Pipeline
    batch_size: int = 64
    max_concurrency: int = 2
    retry_max_attempts: int = 5
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0

    # Case indexing
    cases_path: str = "cases.jsonl"
    progress_path: str = ".index_progress.json"

    model_config = {"env_file": ".env", "extra": "ignore"}

    def qdrant_kwargs(self) -> dict:
        """Keyword arguments for ``AsyncQdrantClient`` built from these settings."""
        if self.qdrant_url:
            kwargs: dict = {"url": self.qdrant_url}
        else:
            kwargs = {"host": self.qdrant_host, "port": self.qdrant_port}
        if self.qdrant_prefer_grpc:
            kwargs["grpc_port"] = self.qdrant_grpc_port
            kwargs["prefer_grpc"] = True
        if self.qdrant_api_key:
            kwargs["api_key"] = self.qdrant_api_key
        kwargs["timeout"] = self.qdrant_timeout
        return kwargs


settings = Settings()

if settings.batch_size > 256:
    logger.warning("BATCH_SIZE=%d is large; encoder memory use grows with it.", settings.batch_size)
