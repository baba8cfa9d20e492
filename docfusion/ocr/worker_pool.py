"""Bounded pool of reusable OCR engine handles.

Handles are expensive to create, so a fixed number is built up front and
shared. Callers that find every handle busy wait in FIFO order; a released
handle goes straight to the oldest waiter.
"""

import asyncio
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from docfusion.errors import DocumentValidationError
from docfusion.text.models import ExtractionAttempt
from docfusion.utils.logger import get_logger

from .tesseract_engine import TesseractEngine

logger = get_logger(__name__)

SUPPORTED_IMAGE_EXTENSIONS = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".tif", ".tiff", ".webp"}
)


def validate_image_path(image_path: Path) -> None:
    """Check that an image exists and has a supported extension.

    Args:
        image_path: Path to the image file.

    Raises:
        DocumentValidationError: If the file is missing or unsupported.
    """
    if not image_path.is_file():
        raise DocumentValidationError(f"Image file not found: {image_path}")
    if image_path.suffix.lower() not in SUPPORTED_IMAGE_EXTENSIONS:
        raise DocumentValidationError(
            f"Unsupported image format: {image_path.suffix or '(none)'}"
        )


@dataclass
class LanguageCandidate:
    """OCR outcome for one candidate language."""

    language: str
    confidence: float
    text: str


@dataclass
class LanguageDetection:
    """Most confident OCR language for an image.

    Attributes:
        success: Whether any candidate language was recognized.
        language: Best language, ``"unknown"`` when none succeeded.
        confidence: OCR confidence of the best language.
        candidates: Successful candidates, most confident first.
    """

    success: bool
    language: str = "unknown"
    confidence: float = 0.0
    candidates: list[LanguageCandidate] = field(default_factory=list)


class OCRWorkerPool:
    """Fixed-size pool of OCR engine handles.

    Args:
        engine_factory: Callable building a handle for a given language.
        size: Number of handles, fixed for the pool's lifetime.
        default_language: Language loaded into every handle at start.
        min_confidence: Results below this confidence carry a warning.
    """

    def __init__(
        self,
        engine_factory: Callable[[str], TesseractEngine] = TesseractEngine,
        size: int = 2,
        default_language: str = "eng",
        min_confidence: float = 0.3,
    ) -> None:
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.size = size
        self.default_language = default_language
        self.min_confidence = min_confidence
        self._handles = [engine_factory(default_language) for _ in range(size)]
        self._idle: deque[TesseractEngine] = deque(self._handles)
        self._waiters: deque[asyncio.Future[TesseractEngine]] = deque()
        self._busy = 0
        self._closed = False

        self._total = 0
        self._successful = 0
        self._confidence_sum = 0.0
        self._time_sum_ms = 0.0
        self._language_usage: Counter[str] = Counter()
        logger.info(
            "OCR worker pool started with %d handles (%s)", size, default_language
        )

    @property
    def busy(self) -> int:
        return self._busy

    @property
    def waiting(self) -> int:
        return sum(1 for w in self._waiters if not w.done())

    async def acquire(self) -> TesseractEngine:
        """Wait for an idle handle.

        A caller only takes an idle handle when nobody is queued; otherwise
        it queues behind the existing waiters.

        Returns:
            A handle reserved for the caller until :meth:`release`.

        Raises:
            RuntimeError: If the pool is closed.
        """
        if self._closed:
            raise RuntimeError("OCR worker pool is closed")
        if self._idle and not self.waiting:
            self._busy += 1
            return self._idle.popleft()

        waiter: asyncio.Future[TesseractEngine] = (
            asyncio.get_running_loop().create_future()
        )
        self._waiters.append(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            # Handed over just before the cancellation landed: pass it on.
            if waiter.done() and not waiter.cancelled():
                self.release(waiter.result())
            raise
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def release(self, handle: TesseractEngine) -> None:
        """Return a handle, handing it directly to the oldest waiter if any.

        The handle never passes through the idle set while someone waits, so
        a caller arriving later cannot take it first.
        """
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(handle)
                return
        self._busy -= 1
        self._idle.append(handle)

    async def recognize(
        self, image_path: Path, language: str | None = None
    ) -> ExtractionAttempt:
        """Run OCR on one image using a pooled handle.

        Missing files, unsupported formats and engine failures are reported
        in the attempt's ``errors``. Low confidence only adds a warning.

        Args:
            image_path: Path to the image file.
            language: Language code, defaults to the pool's default language.

        Returns:
            Extraction attempt with text, confidence and timing.
        """
        language = language or self.default_language
        image_path = Path(image_path)
        start = time.perf_counter()
        attempt = ExtractionAttempt(method="ocr-image", page_count=1)

        try:
            validate_image_path(image_path)
        except DocumentValidationError as exc:
            attempt.errors.append(str(exc))
            attempt.processing_time_ms = (time.perf_counter() - start) * 1000
            self._record(attempt, language)
            return attempt

        handle = await self.acquire()
        try:
            if handle.language != language:
                await asyncio.to_thread(handle.load_language, language)
            result = await asyncio.to_thread(handle.recognize, image_path)
            attempt.text = result.text
            attempt.confidence = result.confidence
            if result.confidence < self.min_confidence:
                attempt.warnings.append(
                    f"Low OCR confidence {result.confidence:.2f} "
                    f"(minimum {self.min_confidence:.2f})"
                )
        except Exception as exc:
            logger.warning("OCR failed for %s: %s", image_path, exc)
            attempt.errors.append(f"OCR failed: {exc}")
        finally:
            self.release(handle)

        attempt.processing_time_ms = (time.perf_counter() - start) * 1000
        self._record(attempt, language)
        return attempt

    async def detect_language(
        self, image_path: Path, candidates: list[str] | None = None
    ) -> LanguageDetection:
        """Recognize an image once per candidate language and keep the best.

        Args:
            image_path: Path to the image file.
            candidates: Language codes to try, defaults to the pool's default
                language.

        Returns:
            The most confident language with every successful candidate.
            Failed languages are skipped.
        """
        results: list[LanguageCandidate] = []
        for language in candidates or [self.default_language]:
            attempt = await self.recognize(image_path, language)
            if not attempt.succeeded:
                logger.debug(
                    "Language %s failed for %s: %s",
                    language,
                    Path(image_path).name,
                    "; ".join(attempt.errors),
                )
                continue
            results.append(
                LanguageCandidate(language, attempt.confidence, attempt.text)
            )

        if not results:
            return LanguageDetection(success=False)
        results.sort(key=lambda c: c.confidence, reverse=True)
        best = results[0]
        logger.info(
            "Detected language %s for %s (confidence %.2f)",
            best.language,
            Path(image_path).name,
            best.confidence,
        )
        return LanguageDetection(
            success=True,
            language=best.language,
            confidence=best.confidence,
            candidates=results,
        )

    async def recognize_batch(
        self,
        image_paths: list[Path],
        language: str | None = None,
        batch_size: int | None = None,
    ) -> list[ExtractionAttempt]:
        """Run OCR on many images, never more at once than the pool size.

        Args:
            image_paths: Image files to recognize.
            language: Language code for every image.
            batch_size: Chunk size, capped at the pool size.

        Returns:
            One attempt per input path, in input order.
        """
        chunk = min(batch_size or self.size, self.size)
        results: list[ExtractionAttempt] = []
        for i in range(0, len(image_paths), chunk):
            batch = image_paths[i : i + chunk]
            results.extend(
                await asyncio.gather(*(self.recognize(p, language) for p in batch))
            )
            logger.debug("OCR batch %d-%d complete", i + 1, i + len(batch))
        return results

    def _record(self, attempt: ExtractionAttempt, language: str) -> None:
        self._total += 1
        self._time_sum_ms += attempt.processing_time_ms
        self._language_usage[language] += 1
        if attempt.succeeded:
            self._successful += 1
            self._confidence_sum += attempt.confidence

    def stats(self) -> dict[str, object]:
        """Summarize pool usage.

        Returns:
            Totals, success rate, mean confidence and latency, per-language
            usage, and the current busy and waiting counts.
        """
        return {
            "total_processed": self._total,
            "successful": self._successful,
            "failed": self._total - self._successful,
            "success_rate": self._successful / self._total if self._total else 0.0,
            "average_confidence": (
                self._confidence_sum / self._successful if self._successful else 0.0
            ),
            "average_processing_time_ms": (
                self._time_sum_ms / self._total if self._total else 0.0
            ),
            "language_usage": dict(self._language_usage),
            "pool_size": self.size,
            "busy": self._busy,
            "waiting": self.waiting,
        }

    async def close(self) -> None:
        """Terminate every handle. The pool cannot be used afterwards."""
        if self._closed:
            return
        self._closed = True
        for handle in self._handles:
            handle.close()
        logger.info("OCR worker pool closed")
