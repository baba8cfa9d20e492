"""Text extraction cascade: first acceptable strategy wins.

Validates the document, picks the strategy chain for its kind (PDF, image
or plain text) and runs it until one strategy delivers enough text.
"""

import time
from pathlib import Path

from docfusion.cascade.runner import (
    ExtractionStrategy,
    FirstAcceptable,
    run_cascade,
)
from docfusion.errors import DocumentValidationError
from docfusion.ocr.pdf_handler import PDFHandler
from docfusion.ocr.worker_pool import SUPPORTED_IMAGE_EXTENSIONS, OCRWorkerPool
from docfusion.utils.config import AppConfig
from docfusion.utils.logger import get_logger

from .models import ExtractionAttempt, ExtractionResult
from .strategies import (
    ImageOcrStrategy,
    OcrRasterStrategy,
    PdfTextLayerStrategy,
    PdfToTextStrategy,
    PlainTextStrategy,
    RawMarkerStrategy,
)

logger = get_logger(__name__)

PDF_EXTENSIONS = frozenset({".pdf"})
TEXT_EXTENSIONS = frozenset({".txt"})

TextStrategy = ExtractionStrategy[Path, ExtractionAttempt]


def document_kind(path: Path) -> str:
    """Classify a document by extension.

    Args:
        path: Document path.

    Returns:
        ``"pdf"``, ``"image"`` or ``"text"``.

    Raises:
        DocumentValidationError: If the extension is not supported.
    """
    suffix = path.suffix.lower()
    if suffix in PDF_EXTENSIONS:
        return "pdf"
    if suffix in SUPPORTED_IMAGE_EXTENSIONS:
        return "image"
    if suffix in TEXT_EXTENSIONS:
        return "text"
    raise DocumentValidationError(f"Unsupported file type: {suffix or '(none)'}")


def validate_document(path: Path) -> str:
    """Fail fast on missing or unsupported documents.

    Args:
        path: Document path.

    Returns:
        The document kind.

    Raises:
        DocumentValidationError: If the file is missing or unsupported.
    """
    if not path.is_file():
        raise DocumentValidationError(f"File not found: {path}")
    return document_kind(path)


class TextExtractionCascade:
    """Ordered text extraction with first-acceptable stopping.

    Args:
        strategies: Strategy chain per document kind.
        min_text_length: Minimum stripped text length to accept a result.
        strategy_timeout: Per-strategy timeout in seconds.
    """

    def __init__(
        self,
        strategies: dict[str, list[TextStrategy]],
        min_text_length: int = 50,
        strategy_timeout: float | None = 60.0,
    ) -> None:
        self.strategies = strategies
        self.policy = FirstAcceptable(min_text_length)
        self.strategy_timeout = strategy_timeout

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        pool: OCRWorkerPool,
        pdf_handler: PDFHandler | None = None,
    ) -> "TextExtractionCascade":
        """Build the standard strategy chains from configuration.

        Args:
            config: Application configuration.
            pool: Shared OCR worker pool.
            pdf_handler: Rasterizer for image-only PDFs.

        Returns:
            Configured cascade.
        """
        text_cfg = config.text
        pdf_handler = pdf_handler or PDFHandler(dpi=config.ocr.pdf_dpi)

        pdf: list[TextStrategy] = [PdfTextLayerStrategy()]
        if text_cfg.enable_pdftotext:
            pdf.append(PdfToTextStrategy(timeout=text_cfg.strategy_timeout_s))
        if text_cfg.enable_ocr:
            pdf.append(OcrRasterStrategy(pool, pdf_handler))
        if text_cfg.enable_raw_scan:
            pdf.append(RawMarkerStrategy(max_bytes=text_cfg.raw_scan_bytes))

        return cls(
            strategies={
                "pdf": pdf,
                "image": [ImageOcrStrategy(pool)],
                "text": [PlainTextStrategy()],
            },
            min_text_length=text_cfg.min_text_length,
            strategy_timeout=text_cfg.strategy_timeout_s,
        )

    async def extract(self, file_path: Path) -> ExtractionResult:
        """Extract text from a document.

        Args:
            file_path: Path to a PDF, image or plain text file.

        Returns:
            The first acceptable attempt, or a failed result carrying every
            strategy's error.

        Raises:
            DocumentValidationError: If the file is missing or unsupported.
        """
        file_path = Path(file_path)
        kind = validate_document(file_path)
        start = time.perf_counter()
        file_size = file_path.stat().st_size

        outcome = await run_cascade(
            self.strategies.get(kind, []),
            file_path,
            self.policy,
            self.strategy_timeout,
        )
        elapsed_ms = (time.perf_counter() - start) * 1000
        best = outcome.best

        if best is None:
            logger.warning("All text extraction methods failed for %s", file_path.name)
            return ExtractionResult(
                success=False,
                errors=[*outcome.errors, "All extraction methods failed"],
                file_size_bytes=file_size,
                processing_time_ms=elapsed_ms,
                attempts=outcome.attempted,
            )

        logger.info(
            "Extracted %d characters from %s with %s (confidence %.2f)",
            len(best.text),
            file_path.name,
            best.method,
            best.confidence,
        )
        return ExtractionResult(
            success=True,
            text=best.text,
            method=best.method,
            confidence=best.confidence,
            page_count=best.page_count,
            errors=outcome.errors,
            file_size_bytes=file_size,
            processing_time_ms=elapsed_ms,
            attempts=outcome.attempted,
        )
