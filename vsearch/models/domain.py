from pydantic import BaseModel, Field

RecordId = int | str


class TextRecord(BaseModel):
    id: RecordId
    text: str
    payload: dict = {}

    model_config = {"frozen": True}


class CollectionInfo(BaseModel):
    name: str
    dimension: int
    distance: str
    points_count: int | None = None


class SearchResult(BaseModel):
    id: RecordId
    score: float
    payload: dict = {}


class RecordFailure(BaseModel):
    id: RecordId
    reason: str
    error: str = ""


class IndexReport(BaseModel):
    total: int = 0
    indexed: int = 0
    failed: int = 0
    batches: int = 0
    halted: bool = False
    failures: list[RecordFailure] = []

    @property
    def failed_ids(self) -> list[RecordId]:
        return [f.id for f in self.failures]


class QueryOutcome(BaseModel):
    query: str
    results: list[SearchResult] = []
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Case(BaseModel):
    """One judgment from the case dump, keyed by its original Chinese column names."""

    doc_id: str = Field(alias="原始链接")
    case_id: str = Field(default="", alias="案号")
    case_name: str = Field(default="", alias="案件名称")
    court: str = Field(default="", alias="法院")
    case_type: str = Field(default="", alias="案件类型")
    procedure: str = Field(default="", alias="审理程序")
    judgment_date: str = Field(default="", alias="裁判日期")
    public_date: str = Field(default="", alias="公开日期")
    parties: str = Field(default="", alias="当事人")
    cause: str = Field(default="", alias="案由")
    legal_basis: str = Field(default="", alias="法律依据")
    full_text: str = Field(default="", alias="全文")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    def summary_payload(self) -> dict:
        """Metadata stored next to the case vector (everything but the full text)."""
        return self.model_dump(exclude={"full_text"})
