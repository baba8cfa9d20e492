"""Validation and normalization of AI metadata responses.

The model is asked for a JSON object; the reply may wrap it in prose or
code fences, carry out-of-range confidences, or use any date format. Every
value is bounded and normalized before it reaches the merge step.
"""

import json
import re
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docfusion.errors import AIServiceError

REQUIRED_KEYS = (
    "clientName",
    "clientConfidence",
    "date",
    "dateConfidence",
    "docType",
    "docTypeConfidence",
    "snippets",
)

DATE_FORMATS: list[str] = [
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%d.%m.%Y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
]

MAX_CLIENT_NAME = 200
MAX_DOC_TYPE = 100
MAX_TITLE = 200
MAX_SNIPPETS = 5
MAX_SNIPPET_LENGTH = 500

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")
_EMPTY_MARKERS = {"", "null", "none", "unknown", "n/a"}


def normalize_date(value: str) -> str | None:
    """Convert a date string to ISO ``YYYY-MM-DD``.

    Args:
        value: Date in any of :data:`DATE_FORMATS`.

    Returns:
        ISO date, or ``None`` if the value is not a valid date.
    """
    value = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _clean_text(value: Any, limit: int) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if text.lower() in _EMPTY_MARKERS or len(text) >= limit:
        return None
    return text


def _clamp(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    if number != number:
        return 0.0
    return min(max(number, 0.0), 1.0)


class AIMetadata(BaseModel):
    """Metadata returned by the AI service, bounded and normalized."""

    model_config = ConfigDict(populate_by_name=True)

    client_name: str | None = Field(default=None, alias="clientName")
    client_confidence: float = Field(default=0.0, alias="clientConfidence")
    date: str | None = None
    date_confidence: float = Field(default=0.0, alias="dateConfidence")
    doc_type: str | None = Field(default=None, alias="docType")
    doc_type_confidence: float = Field(default=0.0, alias="docTypeConfidence")
    amount: str | None = None
    amount_confidence: float = Field(default=0.0, alias="amountConfidence")
    title: str | None = None
    title_confidence: float = Field(default=0.0, alias="titleConfidence")
    snippets: list[str] = Field(default_factory=list)

    @field_validator("client_name", mode="before")
    @classmethod
    def _check_client_name(cls, value: Any) -> str | None:
        return _clean_text(value, MAX_CLIENT_NAME)

    @field_validator("doc_type", mode="before")
    @classmethod
    def _check_doc_type(cls, value: Any) -> str | None:
        return _clean_text(value, MAX_DOC_TYPE)

    @field_validator("title", mode="before")
    @classmethod
    def _check_title(cls, value: Any) -> str | None:
        return _clean_text(value, MAX_TITLE)

    @field_validator("amount", mode="before")
    @classmethod
    def _check_amount(cls, value: Any) -> str | None:
        return _clean_text(value, 50)

    @field_validator("date", mode="before")
    @classmethod
    def _check_date(cls, value: Any) -> str | None:
        text = _clean_text(value, 50)
        return normalize_date(text) if text else None

    @field_validator(
        "client_confidence",
        "date_confidence",
        "doc_type_confidence",
        "amount_confidence",
        "title_confidence",
        mode="before",
    )
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return _clamp(value)

    @field_validator("snippets", mode="before")
    @classmethod
    def _bound_snippets(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        snippets = [str(s).strip()[:MAX_SNIPPET_LENGTH] for s in value if s]
        return [s for s in snippets if s][:MAX_SNIPPETS]

    def confidence_for(self, field_name: str) -> float:
        """Confidence of a merged field, zero when the value is missing."""
        value, confidence = {
            "client_name": (self.client_name, self.client_confidence),
            "date": (self.date, self.date_confidence),
            "document_type": (self.doc_type, self.doc_type_confidence),
            "amount": (self.amount, self.amount_confidence),
            "title": (self.title, self.title_confidence),
        }[field_name]
        return confidence if value else 0.0

    def value_for(self, field_name: str) -> str | None:
        return {
            "client_name": self.client_name,
            "date": self.date,
            "document_type": self.doc_type,
            "amount": self.amount,
            "title": self.title,
        }[field_name]

    @property
    def overall_confidence(self) -> float:
        """Mean of the non-zero core confidences, plus 0.1 when several agree."""
        scores = [
            c
            for c in (
                self.confidence_for("client_name"),
                self.confidence_for("date"),
                self.confidence_for("document_type"),
            )
            if c > 0
        ]
        if not scores:
            return 0.0
        overall = sum(scores) / len(scores)
        if len(scores) > 1:
            overall += 0.1
        return min(overall, 1.0)


def parse_ai_response(content: str) -> AIMetadata:
    """Extract and validate the JSON object in a model reply.

    Args:
        content: Raw assistant message content.

    Returns:
        Normalized metadata.

    Raises:
        AIServiceError: If no JSON object is found, it cannot be parsed, or
            required keys are missing.
    """
    match = _JSON_OBJECT.search(content or "")
    if not match:
        raise AIServiceError("AI response contains no JSON object")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AIServiceError(f"AI response is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise AIServiceError("AI response JSON is not an object")

    missing = [key for key in REQUIRED_KEYS if key not in data]
    if missing:
        raise AIServiceError(f"AI response missing keys: {', '.join(missing)}")
    try:
        return AIMetadata.model_validate(data)
    except ValidationError as exc:
        raise AIServiceError(f"AI response failed validation: {exc}") from exc
