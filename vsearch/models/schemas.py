from typing import Any

from pydantic import BaseModel, Field, field_validator

from vsearch.models.domain import QueryOutcome, TextRecord


class IndexRequest(BaseModel):
    records: list[TextRecord] = Field(min_length=1, max_length=1000)


class SearchRequest(BaseModel):
    queries: list[str] = Field(min_length=1, max_length=64)
    top_k: int = Field(default=10, ge=1, le=100)
    filter: dict[str, Any] | None = None

    @field_validator("queries")
    @classmethod
    def validate_queries(cls, v: list[str]) -> list[str]:
        if any(not q.strip() for q in v):
            raise ValueError("queries must not contain blank strings")
        return v


class SearchResponse(BaseModel):
    outcomes: list[QueryOutcome]
    search_time_ms: float = 0


class HealthResponse(BaseModel):
    status: str
    collection_name: str = ""
    indexed_records: int = 0
    qdrant_connected: bool = True
    model: str = ""
    dimension: int = 0
