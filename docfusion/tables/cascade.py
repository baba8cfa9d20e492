"""Table extraction cascade: best result of all strategies wins.

The ruled-table parser runs first on PDFs. When it fails or scores below the
acceptance threshold, every text-based fallback runs and the most confident
successful result is kept.
"""

import time
from pathlib import Path

from docfusion.cascade.runner import BestOfAll, run_cascade
from docfusion.text.cascade import validate_document
from docfusion.utils.config import TableExtractionConfig
from docfusion.utils.logger import get_logger

from .models import TableExtractionResult, TableOptions, TableSource, TextLoader
from .strategies import (
    ColumnSplitStrategy,
    PdfPlumberTableStrategy,
    RegexTableStrategy,
    TableStrategy,
)

logger = get_logger(__name__)

FALLBACK_STRATEGIES: dict[str, type[ColumnSplitStrategy | RegexTableStrategy]] = {
    "column-split": ColumnSplitStrategy,
    "regex": RegexTableStrategy,
}


class TableExtractionCascade:
    """Best-of-all table extraction.

    Args:
        primary: Strategy tried first on PDFs.
        fallbacks: Strategies tried when the primary is not good enough.
        min_confidence: Primary confidence that skips the fallbacks.
        text_loader: Coroutine function extracting text for the fallbacks
            when the caller supplies none.
        strategy_timeout: Per-strategy timeout in seconds.
    """

    def __init__(
        self,
        primary: TableStrategy,
        fallbacks: list[TableStrategy],
        min_confidence: float = 0.7,
        text_loader: TextLoader | None = None,
        strategy_timeout: float | None = 30.0,
    ) -> None:
        self.primary = primary
        self.fallbacks = fallbacks
        self.min_confidence = min_confidence
        self.text_loader = text_loader
        self.strategy_timeout = strategy_timeout

    @classmethod
    def from_config(
        cls,
        config: TableExtractionConfig,
        text_loader: TextLoader | None = None,
    ) -> "TableExtractionCascade":
        """Build the cascade from configuration.

        Args:
            config: Table extraction configuration.
            text_loader: Text source for the fallbacks.

        Returns:
            Configured cascade.

        Raises:
            ValueError: If a configured fallback method is unknown.
        """
        fallbacks: list[TableStrategy] = []
        for method in config.fallback_methods:
            if method not in FALLBACK_STRATEGIES:
                raise ValueError(f"Unknown table fallback method: {method}")
            fallbacks.append(FALLBACK_STRATEGIES[method](config.block_min_confidence))
        return cls(
            primary=PdfPlumberTableStrategy(),
            fallbacks=fallbacks,
            min_confidence=config.min_confidence,
            text_loader=text_loader,
            strategy_timeout=config.strategy_timeout_s,
        )

    async def extract(
        self, file_path: Path, options: TableOptions | None = None
    ) -> TableExtractionResult:
        """Extract tables from a document.

        Args:
            file_path: Path to a PDF, image or plain text file.
            options: Pre-extracted text and page selection.

        Returns:
            The most confident successful result, or a failed result with
            every strategy's error.

        Raises:
            DocumentValidationError: If the file is missing or unsupported.
        """
        file_path = Path(file_path)
        kind = validate_document(file_path)
        options = options or TableOptions()
        start = time.perf_counter()

        source = TableSource(file_path, kind, options.text, self.text_loader)
        is_pdf = kind == "pdf"
        strategies = [self.primary, *self.fallbacks] if is_pdf else self.fallbacks
        policy = BestOfAll(self.min_confidence, has_primary=is_pdf)
        outcome = await run_cascade(strategies, source, policy, self.strategy_timeout)
        elapsed_ms = (time.perf_counter() - start) * 1000

        best = outcome.best
        if best is None:
            logger.info("No tables found in %s", file_path.name)
            return TableExtractionResult(
                success=False,
                errors=outcome.errors,
                processing_time_ms=elapsed_ms,
            )

        tables = best.tables
        if options.pages is not None:
            tables = [t for t in tables if t.page in options.pages]
        result = TableExtractionResult.from_tables(best.method or "", tables)
        result.errors = [*outcome.errors, *result.errors]
        result.processing_time_ms = elapsed_ms

        logger.info(
            "Found %d tables in %s with %s (confidence %.2f)",
            len(result.tables),
            file_path.name,
            result.method,
            result.overall_confidence,
        )
        return result
