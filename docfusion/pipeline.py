"""End-to-end document pipeline: text extraction followed by fusion.

Builds every component from one :class:`AppConfig` so the CLI and the API
share the same wiring.
"""

import asyncio
from collections.abc import Iterable
from functools import partial
from pathlib import Path

from docfusion.ai.client import HttpMetadataExtractor, MetadataExtractor
from docfusion.cache.result_cache import ResultCache
from docfusion.cache.snapshot import JsonSnapshotStore, MemorySnapshotStore
from docfusion.fusion.engine import FusionEngine
from docfusion.fusion.models import AnalyzeOptions, MergedMetadata
from docfusion.ocr.pdf_handler import PDFHandler
from docfusion.ocr.tesseract_engine import TesseractEngine
from docfusion.ocr.worker_pool import OCRWorkerPool
from docfusion.tables.cascade import TableExtractionCascade
from docfusion.text.cascade import TextExtractionCascade
from docfusion.utils.config import AppConfig
from docfusion.utils.logger import get_logger

logger = get_logger(__name__)


def build_cache(config: AppConfig) -> ResultCache | None:
    """Create the AI result cache, or ``None`` when caching is disabled."""
    cache_cfg = config.cache
    if not cache_cfg.enabled:
        return None
    if cache_cfg.snapshot_path:
        store = JsonSnapshotStore(Path(cache_cfg.snapshot_path))
    else:
        store = MemorySnapshotStore()
    return ResultCache(
        store,
        max_entries=cache_cfg.max_entries,
        ttl_seconds=cache_cfg.ttl_seconds,
    )


class DocumentPipeline:
    """Runs documents through text extraction and metadata fusion.

    Args:
        config: Application configuration.
        ai_extractor: AI metadata source overriding the configured one.
    """

    def __init__(
        self,
        config: AppConfig,
        ai_extractor: MetadataExtractor | None = None,
    ) -> None:
        self.config = config
        ocr = config.ocr
        self.pool = OCRWorkerPool(
            engine_factory=partial(
                TesseractEngine,
                tesseract_cmd=ocr.tesseract_cmd,
                psm=ocr.psm,
                preprocess=ocr.preprocess,
                denoise_method=ocr.denoise_method,
                binarize_method=ocr.binarize_method,
            ),
            size=ocr.pool_size,
            default_language=ocr.default_lang,
            min_confidence=ocr.min_confidence,
        )
        self.text_cascade = TextExtractionCascade.from_config(
            config, self.pool, PDFHandler(dpi=ocr.pdf_dpi)
        )
        table_cascade = None
        if config.tables.enabled:
            table_cascade = TableExtractionCascade.from_config(
                config.tables, text_loader=self._load_text
            )
        if ai_extractor is None and config.ai.enabled:
            ai_extractor = HttpMetadataExtractor(config.ai)
        self.cache = build_cache(config)
        self.engine = FusionEngine(
            config,
            table_cascade=table_cascade,
            ai_extractor=ai_extractor,
            cache=self.cache,
        )

    async def _load_text(self, path: Path) -> str:
        result = await self.text_cascade.extract(path)
        result.raise_for_status()
        return result.text

    async def initialize(self) -> None:
        await self.engine.initialize()

    async def process(
        self, file_path: str | Path, options: AnalyzeOptions | None = None
    ) -> MergedMetadata:
        """Extract text from a file and fuse its metadata.

        Args:
            file_path: Path to a PDF, image or plain text file.
            options: Per-document analysis options.

        Returns:
            The merged record, with text extraction errors prepended to its
            ``errors``.

        Raises:
            DocumentValidationError: If the file is missing or unsupported.
        """
        path = Path(file_path)
        extraction = await self.text_cascade.extract(path)
        if not extraction.success:
            return MergedMetadata(
                errors=extraction.errors,
                file_path=str(path),
                processing_time_ms=extraction.processing_time_ms,
            )

        merged = await self.engine.analyze(extraction.text, path, options)
        merged.errors = [*extraction.errors, *merged.errors]
        merged.processing_time_ms += extraction.processing_time_ms
        return merged

    async def process_many(
        self,
        paths: Iterable[str | Path],
        options: AnalyzeOptions | None = None,
    ) -> list[MergedMetadata]:
        """Process files concurrently in chunks, preserving input order.

        A file that fails validation or raises becomes an error record.
        """
        paths = [Path(p) for p in paths]
        chunk_size = self.config.ai.batch_size
        results: list[MergedMetadata] = []
        for i in range(0, len(paths), chunk_size):
            chunk = paths[i : i + chunk_size]
            outcomes = await asyncio.gather(
                *(self.process(path, options) for path in chunk),
                return_exceptions=True,
            )
            for path, outcome in zip(chunk, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("Failed to process %s: %s", path.name, outcome)
                    outcome = MergedMetadata(errors=[str(outcome)], file_path=str(path))
                elif isinstance(outcome, BaseException):
                    raise outcome
                results.append(outcome)
        return results

    def get_stats(self) -> dict[str, object]:
        return {"engine": self.engine.get_stats(), "ocr": self.pool.stats()}

    async def close(self) -> None:
        await self.engine.close()
        await self.pool.close()
