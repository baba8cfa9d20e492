"""Configuration management for the document metadata extraction system.

Loads and validates YAML configuration with sensible defaults for OCR,
text and table extraction, the AI result cache, the AI service, and the
fusion of field candidates.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_FIELD_WEIGHTS: dict[str, float] = {
    "client_name": 0.3,
    "date": 0.25,
    "document_type": 0.25,
    "amount": 0.1,
    "title": 0.1,
}


class OCRConfig(BaseModel):
    """Configuration for the Tesseract worker pool."""

    tesseract_cmd: str | None = None
    default_lang: str = "eng"
    psm: int = 3
    pdf_dpi: int = Field(default=300, ge=72, le=1200)
    pool_size: int = Field(default=2, ge=1, le=32)
    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    preprocess: bool = True
    denoise_method: str = "bilateral"
    binarize_method: str = "adaptive"


class TextExtractionConfig(BaseModel):
    """Configuration for the text extraction cascade."""

    min_text_length: int = Field(default=50, ge=0)
    strategy_timeout_s: float = Field(default=60.0, gt=0)
    enable_pdftotext: bool = True
    enable_ocr: bool = True
    enable_raw_scan: bool = True
    raw_scan_bytes: int = Field(default=100_000, gt=0)


class TableExtractionConfig(BaseModel):
    """Configuration for the table extraction cascade."""

    enabled: bool = True
    min_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    block_min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    fallback_methods: list[str] = Field(
        default_factory=lambda: ["column-split", "regex"]
    )
    strategy_timeout_s: float = Field(default=30.0, gt=0)


class CacheConfig(BaseModel):
    """Configuration for the content-addressed AI result cache."""

    enabled: bool = True
    snapshot_path: str = ".cache/ai_results.json"
    max_entries: int = Field(default=1000, ge=1)
    ttl_seconds: float = Field(default=7 * 24 * 60 * 60, gt=0)


class AIConfig(BaseModel):
    """Configuration for the AI metadata extraction service."""

    enabled: bool = False
    base_url: str = "https://api.openai.com/v1"
    api_key: str | None = Field(default=None, validate_default=True)
    model: str = "gpt-4o-mini"
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=500, gt=0)
    timeout_s: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_delay_s: float = Field(default=1.0, ge=0.0)
    max_retry_delay_s: float = Field(default=10.0, ge=0.0)
    confidence_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    batch_size: int = Field(default=5, ge=1)
    max_prompt_chars: int = Field(default=4000, gt=0)

    @field_validator("api_key")
    @classmethod
    def _api_key_from_env(cls, value: str | None) -> str | None:
        return value or os.environ.get("AI_API_KEY")


class FusionConfig(BaseModel):
    """Configuration for merging field candidates."""

    acceptance_floor: float = Field(default=0.3, ge=0.0, le=1.0)
    field_weights: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_FIELD_WEIGHTS)
    )
    known_clients: list[str] = Field(default_factory=list)
    client_match_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    prefer_ai_fields: list[str] = Field(default_factory=list)
    prefer_ai_below: float = Field(default=0.5, ge=0.0, le=1.0)


class AppConfig(BaseModel):
    """Top-level application configuration."""

    ocr: OCRConfig = Field(default_factory=OCRConfig)
    text: TextExtractionConfig = Field(default_factory=TextExtractionConfig)
    tables: TableExtractionConfig = Field(default_factory=TableExtractionConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    ai: AIConfig = Field(default_factory=AIConfig)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    log_level: str = "INFO"


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return AppConfig(**raw)

    logger.info("No config file found at %s, using defaults", path)
    return AppConfig()
