"""Pydantic request/response schemas for the FastAPI endpoints."""

from enum import StrEnum

from pydantic import BaseModel, Field


class MetadataSource(StrEnum):
    """Where a metadata record's values came from."""

    REGEX = "regex"
    HYBRID = "hybrid"
    AI = "ai"
    AI_CACHED = "ai-cached"


class FieldValueResponse(BaseModel):
    """Response schema for one merged field."""

    value: str | None = None
    confidence: float
    source: str


class TableResponse(BaseModel):
    """Response schema for one extracted table."""

    page: int
    index: int
    rows: int
    cols: int
    grid: list[list[str]]
    confidence: float
    method: str


class AnalyzeResponse(BaseModel):
    """Response schema for a document analysis request."""

    success: bool
    file_name: str | None = None
    fields: dict[str, FieldValueResponse]
    confidence: float
    source: MetadataSource
    methods_used: list[str]
    tables: list[TableResponse] = Field(default_factory=list)
    table_confidence: float = 0.0
    ai_confidence: float | None = None
    snippets: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    processing_time_ms: float


class AnalyzeTextRequest(BaseModel):
    """Request schema for analyzing already extracted text."""

    text: str = Field(min_length=1)
    force_ai: bool = False
    force_refresh: bool = False
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class CacheStatsResponse(BaseModel):
    """Response schema for AI result cache statistics."""

    enabled: bool
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0
    hit_rate: float = 0.0
    size: int = 0
    max_size: int = 0


class HealthResponse(BaseModel):
    """Response schema for the health check endpoint."""

    status: str
    version: str
    tesseract_available: bool
    pdftotext_available: bool
    ai_enabled: bool
    cache_enabled: bool
