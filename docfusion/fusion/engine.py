"""Fusion engine: local extraction, optional AI, per-field merge.

Each document goes through pattern extraction, an AI decision, a
cache-checked AI call when needed, and a field-by-field merge of the
regex, table and AI candidates into one record.
"""

import asyncio
import os
import time
from collections.abc import Iterable
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from docfusion.ai.client import AIRequestOptions, MetadataExtractor
from docfusion.ai.prompts import AIContext
from docfusion.ai.response import AIMetadata
from docfusion.cache.result_cache import ResultCache, hash_text
from docfusion.errors import AIServiceError, CacheError, CacheNotInitializedError
from docfusion.tables.cascade import TableExtractionCascade
from docfusion.tables.models import TableExtractionResult, TableOptions
from docfusion.utils.config import AppConfig
from docfusion.utils.logger import get_logger

from .local_extractor import LocalExtractor
from .merge import MergePolicy, merge_field, methods_used, weighted_confidence
from .models import (
    FIELDS,
    SOURCE_AI,
    SOURCE_REGEX,
    SOURCE_TABLE,
    AnalyzeOptions,
    FieldCandidate,
    FieldValue,
    LocalExtraction,
    MergedMetadata,
)
from .policy import should_use_ai
from .table_fields import fields_from_tables

logger = get_logger(__name__)

SOURCE_HYBRID = "hybrid"
SOURCE_AI_CACHED = "ai-cached"

Document = tuple[str, str | Path | None] | dict[str, Any]


class FusionEngine:
    """Combines pattern, table and AI extraction into one metadata record.

    Args:
        config: Application configuration.
        local_extractor: Pattern extractor, built from ``config.fusion``
            when omitted.
        table_cascade: Table extraction cascade; tables are skipped when
            omitted.
        ai_extractor: AI metadata source; AI is never called when omitted.
        cache: Cache of AI results; every AI decision calls the service
            when omitted.
        merge_policy: Field merge policy, built from ``config.fusion`` when
            omitted.
    """

    def __init__(
        self,
        config: AppConfig,
        local_extractor: LocalExtractor | None = None,
        table_cascade: TableExtractionCascade | None = None,
        ai_extractor: MetadataExtractor | None = None,
        cache: ResultCache | None = None,
        merge_policy: MergePolicy | None = None,
    ) -> None:
        self.config = config
        fusion = config.fusion
        self.local_extractor = local_extractor or LocalExtractor(
            known_clients=fusion.known_clients,
            client_match_threshold=fusion.client_match_threshold,
        )
        self.table_cascade = table_cascade
        self.ai_extractor = ai_extractor
        self.cache = cache
        self.merge_policy = merge_policy or MergePolicy(
            acceptance_floor=fusion.acceptance_floor,
            prefer_ai_fields=frozenset(fusion.prefer_ai_fields),
            prefer_ai_below=fusion.prefer_ai_below,
        )
        self._stats = {
            "documents": 0,
            "ai_decisions": 0,
            "ai_calls": 0,
            "ai_failures": 0,
            "cache_hits": 0,
            "errors": 0,
        }

    async def initialize(self) -> None:
        """Load the result cache snapshot, if a cache is configured."""
        if self.cache is not None:
            await self.cache.initialize()
        logger.info(
            "Fusion engine ready (ai=%s, cache=%s, tables=%s)",
            self.ai_extractor is not None,
            self.cache is not None,
            self.table_cascade is not None,
        )

    async def analyze(
        self,
        text: str,
        file_path: str | Path | None = None,
        options: AnalyzeOptions | None = None,
    ) -> MergedMetadata:
        """Analyze one document's text.

        Args:
            text: Extracted document text.
            file_path: Source file, used for table extraction and AI context.
            options: Per-document options.

        Returns:
            The merged record. Table and AI failures are reported in
            ``errors`` and never raised.
        """
        options = options or AnalyzeOptions()
        start = time.perf_counter()
        path = Path(file_path) if file_path is not None else None
        self._stats["documents"] += 1

        if not text or not text.strip():
            return MergedMetadata(
                errors=["No text content provided"],
                file_path=str(path) if path else None,
                processing_time_ms=(time.perf_counter() - start) * 1000,
            )

        errors: list[str] = []
        local = self.local_extractor.extract(text)

        tables = TableExtractionResult(success=False)
        if path is not None and options.extract_tables and self.table_cascade:
            tables = await self._extract_tables(path, text, errors)

        ai_metadata: AIMetadata | None = None
        ai_source = SOURCE_AI
        if should_use_ai(local, options, self.config.ai.confidence_threshold):
            self._stats["ai_decisions"] += 1
            ai_metadata, ai_source = await self._ai_metadata(
                text, path, local, options, errors
            )

        fields = self._merge(local, tables, ai_metadata)
        merged = MergedMetadata(
            **fields,
            confidence=weighted_confidence(fields, self.config.fusion.field_weights),
            source=self._output_source(fields, ai_metadata, ai_source),
            methods_used=methods_used(fields),
            tables=tables.tables,
            table_confidence=tables.overall_confidence,
            table_method=tables.method if tables.success else None,
            ai_confidence=(
                ai_metadata.overall_confidence if ai_metadata is not None else None
            ),
            snippets=list(ai_metadata.snippets) if ai_metadata is not None else [],
            errors=errors,
            file_path=str(path) if path else None,
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
        logger.info(
            "Analyzed %s: source=%s confidence=%.2f",
            path.name if path else "text",
            merged.source,
            merged.confidence,
        )
        return merged

    async def _extract_tables(
        self, path: Path, text: str, errors: list[str]
    ) -> TableExtractionResult:
        try:
            result = await self.table_cascade.extract(path, TableOptions(text=text))
        except Exception as exc:
            logger.warning("Table extraction failed for %s: %s", path.name, exc)
            errors.append(f"Table extraction failed: {exc}")
            return TableExtractionResult(success=False)
        return result

    async def _ai_metadata(
        self,
        text: str,
        path: Path | None,
        local: LocalExtraction,
        options: AnalyzeOptions,
        errors: list[str],
    ) -> tuple[AIMetadata | None, str]:
        if self.ai_extractor is None:
            logger.debug("AI requested but no extractor is configured")
            return None, SOURCE_AI

        key = hash_text(text)
        if not options.force_refresh:
            cached = await self._cache_get(key)
            if cached is not None:
                self._stats["cache_hits"] += 1
                return cached, SOURCE_AI_CACHED

        self._stats["ai_calls"] += 1
        try:
            metadata = await self.ai_extractor.extract(
                text,
                await self._ai_context(path, local),
                AIRequestOptions(
                    model=options.model,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                ),
            )
        except AIServiceError as exc:
            self._stats["ai_failures"] += 1
            logger.warning("AI extraction failed: %s", exc)
            errors.append(f"AI extraction failed: {exc}")
            return None, SOURCE_AI

        await self._cache_set(key, metadata)
        return metadata, SOURCE_AI

    async def _cache_get(self, key: str) -> AIMetadata | None:
        if self.cache is None:
            return None
        try:
            payload = await self.cache.get(key)
        except CacheNotInitializedError:
            raise
        except CacheError as exc:
            logger.warning("Cache lookup failed, treating as miss: %s", exc)
            return None
        if payload is None:
            return None
        try:
            return AIMetadata.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cached result: %s", exc)
            return None

    async def _cache_set(self, key: str, metadata: AIMetadata) -> None:
        if self.cache is None:
            return
        try:
            await self.cache.set(key, metadata.model_dump())
        except CacheNotInitializedError:
            raise
        except CacheError as exc:
            logger.warning("Could not cache AI result: %s", exc)

    @staticmethod
    def _file_stat(path: Path | None) -> os.stat_result | None:
        if path is None or not path.exists():
            return None
        return path.stat()

    async def _ai_context(self, path: Path | None, local: LocalExtraction) -> AIContext:
        entities = {
            name: value.value for name, value in local.fields.items() if value.value
        }
        stat = await asyncio.to_thread(self._file_stat, path)
        if path is None or stat is None:
            return AIContext(local_entities=entities)
        return AIContext(
            file_name=path.name,
            file_size_bytes=stat.st_size,
            modified_at=datetime.fromtimestamp(stat.st_mtime).isoformat(),
            local_entities=entities,
        )

    def _merge(
        self,
        local: LocalExtraction,
        tables: TableExtractionResult,
        ai_metadata: AIMetadata | None,
    ) -> dict[str, FieldValue]:
        table_candidates = fields_from_tables(tables.tables) if tables.success else {}
        fields: dict[str, FieldValue] = {}
        for name in FIELDS:
            local_value = local.fields[name]
            candidates = [
                FieldCandidate(local_value.value, local_value.confidence, SOURCE_REGEX)
            ]
            if name in table_candidates:
                candidates.append(table_candidates[name])
            if ai_metadata is not None:
                candidates.append(
                    FieldCandidate(
                        ai_metadata.value_for(name),
                        ai_metadata.confidence_for(name),
                        SOURCE_AI,
                    )
                )
            fields[name] = merge_field(name, candidates, self.merge_policy)
        return fields

    @staticmethod
    def _output_source(
        fields: dict[str, FieldValue],
        ai_metadata: AIMetadata | None,
        ai_source: str,
    ) -> str:
        if ai_metadata is None:
            return SOURCE_REGEX
        winners = {value.source for value in fields.values()}
        if winners & {SOURCE_REGEX, SOURCE_TABLE}:
            return SOURCE_HYBRID
        return ai_source

    async def process_batch(
        self,
        documents: Iterable[Document],
        options: AnalyzeOptions | None = None,
    ) -> list[MergedMetadata]:
        """Analyze documents concurrently in chunks, preserving input order.

        Args:
            documents: ``(text, file_path)`` pairs or dicts with ``text`` and
                ``file_path`` keys.
            options: Options applied to every document.

        Returns:
            One record per document, in input order. A document that raises
            becomes a record whose ``errors`` describe the failure.
        """
        docs = [self._unpack(doc) for doc in documents]
        chunk_size = self.config.ai.batch_size
        results: list[MergedMetadata] = []

        for i in range(0, len(docs), chunk_size):
            chunk = docs[i : i + chunk_size]
            outcomes = await asyncio.gather(
                *(self.analyze(text, path, options) for text, path in chunk),
                return_exceptions=True,
            )
            for (_, path), outcome in zip(chunk, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    self._stats["errors"] += 1
                    logger.error("Failed to analyze %s: %s", path or "text", outcome)
                    outcome = MergedMetadata(
                        errors=[f"Analysis failed: {outcome}"],
                        file_path=str(path) if path else None,
                    )
                results.append(outcome)
            logger.info(
                "Processed batch %d/%d",
                i // chunk_size + 1,
                (len(docs) + chunk_size - 1) // chunk_size,
            )
        return results

    @staticmethod
    def _unpack(doc: Document) -> tuple[str, str | Path | None]:
        if isinstance(doc, dict):
            return doc.get("text", ""), doc.get("file_path")
        text, path = doc
        return text, path

    def get_stats(self) -> dict[str, Any]:
        """Engine counters, plus cache statistics when a cache is set."""
        stats: dict[str, Any] = dict(self._stats)
        stats["ai_enabled"] = self.ai_extractor is not None
        if self.cache is not None:
            stats["cache"] = self.cache.get_stats()
        return stats

    async def close(self) -> None:
        """Persist the cache and release the AI client."""
        if self.cache is not None:
            await self.cache.close()
        if self.ai_extractor is not None:
            await self.ai_extractor.close()
        logger.info("Fusion engine closed")
