"""Table extraction result types."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path


@dataclass
class Table:
    """A rectangular table found on one page."""

    page: int
    index: int
    rows: int
    cols: int
    grid: list[list[str]]
    confidence: float
    method: str

    def to_dict(self) -> dict[str, object]:
        return {
            "page": self.page,
            "index": self.index,
            "rows": self.rows,
            "cols": self.cols,
            "grid": self.grid,
            "confidence": round(self.confidence, 3),
            "method": self.method,
        }


@dataclass
class TableExtractionResult:
    """Tables produced by one strategy, or by the whole cascade."""

    success: bool
    tables: list[Table] = field(default_factory=list)
    overall_confidence: float = 0.0
    method: str | None = None
    errors: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.success

    @property
    def confidence(self) -> float:
        return self.overall_confidence

    @classmethod
    def from_tables(cls, method: str, tables: list[Table]) -> "TableExtractionResult":
        """Build a strategy result; an empty table list is a failure."""
        if not tables:
            return cls(success=False, method=method, errors=["no tables found"])
        return cls(
            success=True,
            tables=tables,
            overall_confidence=sum(t.confidence for t in tables) / len(tables),
            method=method,
        )


@dataclass
class TableOptions:
    """Per-call table extraction options.

    Attributes:
        text: Already extracted document text, used by the text-based
            fallbacks instead of extracting it again.
        pages: 1-based page numbers to keep, ``None`` for all pages.
    """

    text: str | None = None
    pages: list[int] | None = None


TextLoader = Callable[[Path], Awaitable[str]]


class TableSource:
    """A document being searched for tables.

    The document text is loaded at most once, and only when a text-based
    strategy asks for it.

    Args:
        path: Document path.
        kind: Document kind (``"pdf"``, ``"image"`` or ``"text"``).
        text: Text supplied by the caller, if any.
        loader: Coroutine function extracting text from the path.
    """

    def __init__(
        self,
        path: Path,
        kind: str,
        text: str | None = None,
        loader: TextLoader | None = None,
    ) -> None:
        self.path = path
        self.kind = kind
        self._text = text
        self._loader = loader

    async def text(self) -> str:
        """Return the document text, loading it on first use.

        Raises:
            RuntimeError: If no text was supplied and no loader is set.
        """
        if self._text is None:
            if self._loader is None:
                raise RuntimeError("no document text available")
            self._text = await self._loader(self.path)
        return self._text
