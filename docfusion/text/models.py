"""Result types shared by OCR and the text extraction cascade."""

from dataclasses import dataclass, field

from docfusion.errors import CascadeExhausted


@dataclass
class ExtractionAttempt:
    """Output of one extraction strategy on one document."""

    method: str
    text: str = ""
    page_count: int = 0
    confidence: float = 0.0
    processing_time_ms: float = 0.0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


@dataclass
class ExtractionResult:
    """Outcome of the text extraction cascade for one document."""

    success: bool
    text: str = ""
    method: str | None = None
    confidence: float = 0.0
    page_count: int = 0
    errors: list[str] = field(default_factory=list)
    file_size_bytes: int = 0
    processing_time_ms: float = 0.0
    attempts: list[str] = field(default_factory=list)

    def raise_for_status(self) -> None:
        """Raise :class:`CascadeExhausted` if no strategy succeeded."""
        if not self.success:
            raise CascadeExhausted(self.errors)

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "method": self.method,
            "confidence": round(self.confidence, 3),
            "page_count": self.page_count,
            "errors": list(self.errors),
            "file_size_bytes": self.file_size_bytes,
            "processing_time_ms": round(self.processing_time_ms, 1),
            "attempts": list(self.attempts),
        }
