"""Data types of the fusion engine."""

from dataclasses import dataclass, field

from docfusion.tables.models import Table

FIELDS = ("client_name", "date", "document_type", "amount", "title")
CORE_FIELDS = ("client_name", "date", "document_type")

SOURCE_REGEX = "regex"
SOURCE_TABLE = "table"
SOURCE_AI = "ai"
SOURCE_NONE = "none"


@dataclass(frozen=True)
class FieldCandidate:
    """One source's proposal for a field value."""

    value: str | None
    confidence: float
    source: str


@dataclass
class FieldValue:
    """The merged value of one field with its provenance."""

    value: str | None = None
    confidence: float = 0.0
    source: str = SOURCE_NONE

    def to_dict(self) -> dict[str, object]:
        return {
            "value": self.value,
            "confidence": round(self.confidence, 3),
            "source": self.source,
        }


@dataclass
class LocalExtraction:
    """Fields found by pattern and keyword matching."""

    fields: dict[str, FieldValue]
    confidence: float

    def value(self, name: str) -> str | None:
        return self.fields[name].value

    def missing_core_fields(self) -> list[str]:
        return [name for name in CORE_FIELDS if not self.fields[name].value]


@dataclass
class AnalyzeOptions:
    """Per-document analysis options.

    Attributes:
        force_ai: Call the AI service even when local extraction suffices.
        force_refresh: Skip the cache lookup (the fresh result is still
            stored).
        extract_tables: Run the table cascade when a file path is given.
        model: AI model override.
        temperature: AI sampling temperature override.
        max_tokens: AI response length override.
    """

    force_ai: bool = False
    force_refresh: bool = False
    extract_tables: bool = True
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None


@dataclass
class MergedMetadata:
    """Final metadata record for one document."""

    client_name: FieldValue = field(default_factory=FieldValue)
    date: FieldValue = field(default_factory=FieldValue)
    document_type: FieldValue = field(default_factory=FieldValue)
    amount: FieldValue = field(default_factory=FieldValue)
    title: FieldValue = field(default_factory=FieldValue)
    confidence: float = 0.0
    source: str = SOURCE_REGEX
    methods_used: list[str] = field(default_factory=list)
    tables: list[Table] = field(default_factory=list)
    table_confidence: float = 0.0
    table_method: str | None = None
    ai_confidence: float | None = None
    snippets: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    file_path: str | None = None
    processing_time_ms: float = 0.0

    @property
    def field_sources(self) -> dict[str, str]:
        return {name: getattr(self, name).source for name in FIELDS}

    def get_field(self, name: str) -> FieldValue:
        return getattr(self, name)

    def to_dict(self) -> dict[str, object]:
        return {
            "file_path": self.file_path,
            "fields": {name: self.get_field(name).to_dict() for name in FIELDS},
            "confidence": round(self.confidence, 3),
            "source": self.source,
            "field_sources": self.field_sources,
            "methods_used": list(self.methods_used),
            "tables": [t.to_dict() for t in self.tables],
            "table_confidence": round(self.table_confidence, 3),
            "table_method": self.table_method,
            "ai_confidence": (
                round(self.ai_confidence, 3) if self.ai_confidence is not None else None
            ),
            "snippets": list(self.snippets),
            "errors": list(self.errors),
            "processing_time_ms": round(self.processing_time_ms, 1),
        }
