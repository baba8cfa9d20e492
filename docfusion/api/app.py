"""FastAPI application for the document metadata API.

Provides REST endpoints for analyzing uploaded documents or raw text,
inspecting the AI result cache, and health checks.
"""

import shutil
import tempfile
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware

from docfusion import __version__
from docfusion.errors import DocumentValidationError
from docfusion.fusion.models import FIELDS, AnalyzeOptions, MergedMetadata
from docfusion.pipeline import DocumentPipeline
from docfusion.text.cascade import document_kind
from docfusion.utils.config import load_config
from docfusion.utils.logger import get_logger

from .schemas import (
    AnalyzeResponse,
    AnalyzeTextRequest,
    CacheStatsResponse,
    FieldValueResponse,
    HealthResponse,
    TableResponse,
)

logger = get_logger(__name__)

PipelineFactory = Callable[[], DocumentPipeline]


def _default_pipeline() -> DocumentPipeline:
    return DocumentPipeline(load_config())


def _to_response(merged: MergedMetadata, file_name: str | None) -> AnalyzeResponse:
    fields = {
        name: FieldValueResponse(**merged.get_field(name).to_dict()) for name in FIELDS
    }
    has_values = any(f.value for f in fields.values())
    return AnalyzeResponse(
        success=has_values or not merged.errors,
        file_name=file_name,
        fields=fields,
        confidence=round(merged.confidence, 3),
        source=merged.source,
        methods_used=merged.methods_used,
        tables=[TableResponse(**t.to_dict()) for t in merged.tables],
        table_confidence=round(merged.table_confidence, 3),
        ai_confidence=merged.ai_confidence,
        snippets=merged.snippets,
        errors=merged.errors,
        processing_time_ms=merged.processing_time_ms,
    )


def _pipeline(request: Request) -> DocumentPipeline:
    return request.app.state.pipeline


def create_app(pipeline_factory: PipelineFactory = _default_pipeline) -> FastAPI:
    """Build the API application.

    Args:
        pipeline_factory: Builds the pipeline shared by all requests; it is
            created and initialized at startup and closed at shutdown.

    Returns:
        Configured FastAPI application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pipeline = pipeline_factory()
        await pipeline.initialize()
        app.state.pipeline = pipeline
        try:
            yield
        finally:
            await pipeline.close()

    app = FastAPI(
        title="Document Metadata API",
        description="Extract client, date, type, amount and title from documents",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Return system health status."""
        pipeline = _pipeline(request)
        return HealthResponse(
            status="healthy",
            version=__version__,
            tesseract_available=shutil.which("tesseract") is not None,
            pdftotext_available=shutil.which("pdftotext") is not None,
            ai_enabled=pipeline.engine.ai_extractor is not None,
            cache_enabled=pipeline.cache is not None,
        )

    @app.post("/analyze", response_model=AnalyzeResponse)
    async def analyze_document(
        request: Request,
        file: Annotated[UploadFile, File(...)],
        force_ai: Annotated[bool, Query()] = False,
        force_refresh: Annotated[bool, Query()] = False,
        extract_tables: Annotated[bool, Query()] = True,
    ) -> AnalyzeResponse:
        """Extract metadata from an uploaded document.

        Args:
            request: Incoming request, carrying the shared pipeline.
            file: Uploaded PDF, image or plain text file.
            force_ai: Always call the AI service.
            force_refresh: Ignore cached AI results.
            extract_tables: Run table extraction.

        Returns:
            Merged metadata with per-field provenance.
        """
        file_name = file.filename or "document"
        suffix = Path(file_name).suffix.lower()
        try:
            document_kind(Path(file_name))
        except DocumentValidationError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

        options = AnalyzeOptions(
            force_ai=force_ai,
            force_refresh=force_refresh,
            extract_tables=extract_tables,
        )
        with tempfile.TemporaryDirectory() as tmp_dir:
            tmp_path = Path(tmp_dir) / f"upload{suffix}"
            tmp_path.write_bytes(await file.read())
            try:
                merged = await _pipeline(request).process(tmp_path, options)
            except DocumentValidationError as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except Exception as exc:
                logger.error("Analysis of %s failed: %s", file_name, exc)
                raise HTTPException(status_code=500, detail=str(exc)) from exc

        merged.file_path = file_name
        return _to_response(merged, file_name)

    @app.post("/analyze/text", response_model=AnalyzeResponse)
    async def analyze_text(
        request: Request, body: AnalyzeTextRequest
    ) -> AnalyzeResponse:
        """Extract metadata from already extracted text."""
        options = AnalyzeOptions(
            force_ai=body.force_ai,
            force_refresh=body.force_refresh,
            model=body.model,
            temperature=body.temperature,
            max_tokens=body.max_tokens,
        )
        merged = await _pipeline(request).engine.analyze(body.text, None, options)
        return _to_response(merged, None)

    @app.get("/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats(request: Request) -> CacheStatsResponse:
        """Return AI result cache statistics."""
        cache = _pipeline(request).cache
        if cache is None:
            return CacheStatsResponse(enabled=False)
        stats = cache.get_stats()
        return CacheStatsResponse(
            enabled=True,
            hits=stats["hits"],
            misses=stats["misses"],
            sets=stats["sets"],
            evictions=stats["evictions"],
            hit_rate=stats["hit_rate"],
            size=stats["size"],
            max_size=stats["max_size"],
        )

    return app


app = create_app()
