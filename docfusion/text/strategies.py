"""Text extraction strategies, from most to least reliable.

Each strategy reads one document and returns an :class:`ExtractionAttempt`
scored by :func:`score_text`. Blocking library calls run in worker threads
and external utilities run as subprocesses with a timeout.
"""

import asyncio
import re
import tempfile
import time
from pathlib import Path

import pdfplumber

from docfusion.cascade.runner import ExtractionStrategy
from docfusion.errors import StrategyFailure
from docfusion.ocr.pdf_handler import PDFHandler
from docfusion.ocr.worker_pool import OCRWorkerPool
from docfusion.utils.logger import get_logger

from .models import ExtractionAttempt

logger = get_logger(__name__)

PAGE_SEPARATOR = "\f"

_ALPHA_RUN = re.compile(r"[A-Za-z]{3,}")
_FOUR_DIGITS = re.compile(r"\d{4}")
_EMAIL_LIKE = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+")

_TEXT_OBJECT = re.compile(rb"\bBT\b(.*?)\bET\b", re.DOTALL)
_LITERAL_STRING = re.compile(rb"\((?:\\.|[^\\)])*\)", re.DOTALL)
_PAGE_OBJECT = re.compile(rb"/Type\s*/Page\b")
_PDFINFO_PAGES = re.compile(r"^Pages:\s+(\d+)", re.MULTILINE)
_ESCAPES = {b"n": b"\n", b"r": b"\r", b"t": b"\t", b"(": b"(", b")": b")"}


def score_text(text: str, base: float) -> float:
    """Adjust a strategy's base confidence by the quality of its text.

    Each of these adds 0.1: more than 500 characters, more than 1000
    characters, a run of three letters, a four-digit number, and an
    email-like token.

    Args:
        text: Extracted text.
        base: Base confidence of the strategy.

    Returns:
        Confidence capped at 1.0.
    """
    score = base
    length = len(text.strip())
    if length > 500:
        score += 0.1
    if length > 1000:
        score += 0.1
    if _ALPHA_RUN.search(text):
        score += 0.1
    if _FOUR_DIGITS.search(text):
        score += 0.1
    if _EMAIL_LIKE.search(text):
        score += 0.1
    return min(score, 1.0)


async def run_command(args: list[str], timeout: float) -> str:
    """Run an external utility and return its standard output.

    Args:
        args: Program and arguments.
        timeout: Seconds before the process is killed.

    Returns:
        Decoded standard output.

    Raises:
        StrategyFailure: On timeout or non-zero exit status.
    """
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout)
    except TimeoutError:
        proc.kill()
        await proc.wait()
        raise StrategyFailure(args[0], f"timed out after {timeout}s") from None

    if proc.returncode != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise StrategyFailure(
            args[0], message or f"exited with status {proc.returncode}"
        )
    return stdout.decode("utf-8", errors="replace")


class PdfTextLayerStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Read the embedded text layer of a PDF with pdfplumber."""

    name = "pdf-text-layer"
    base_confidence = 0.9

    async def attempt(self, source: Path) -> ExtractionAttempt:
        start = time.perf_counter()
        text, page_count = await asyncio.to_thread(self._read, source)
        return ExtractionAttempt(
            method=self.name,
            text=text,
            page_count=page_count,
            confidence=score_text(text, self.base_confidence),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    @staticmethod
    def _read(path: Path) -> tuple[str, int]:
        with pdfplumber.open(path) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
        return PAGE_SEPARATOR.join(pages), len(pages)


class PdfToTextStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Run Poppler's ``pdftotext -layout`` and ``pdfinfo``.

    Args:
        timeout: Seconds allowed for each utility call.
    """

    name = "pdftotext"
    base_confidence = 0.8

    def __init__(self, timeout: float = 30.0) -> None:
        self.timeout = timeout

    async def attempt(self, source: Path) -> ExtractionAttempt:
        start = time.perf_counter()
        text = await run_command(
            ["pdftotext", "-layout", str(source), "-"], self.timeout
        )
        attempt = ExtractionAttempt(
            method=self.name,
            text=text.rstrip(PAGE_SEPARATOR),
            confidence=score_text(text, self.base_confidence),
        )
        try:
            info = await run_command(["pdfinfo", str(source)], self.timeout)
            match = _PDFINFO_PAGES.search(info)
            attempt.page_count = int(match.group(1)) if match else 0
        except (StrategyFailure, OSError) as exc:
            attempt.warnings.append(f"page count unavailable: {exc}")
        attempt.processing_time_ms = (time.perf_counter() - start) * 1000
        return attempt


class OcrRasterStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Rasterize PDF pages and recognize them through the OCR pool.

    Args:
        pool: Shared OCR worker pool.
        pdf_handler: Page rasterizer.
        language: OCR language, defaults to the pool default.
    """

    name = "ocr"
    base_confidence = 0.6

    def __init__(
        self,
        pool: OCRWorkerPool,
        pdf_handler: PDFHandler,
        language: str | None = None,
    ) -> None:
        self.pool = pool
        self.pdf_handler = pdf_handler
        self.language = language

    async def attempt(self, source: Path) -> ExtractionAttempt:
        start = time.perf_counter()
        with tempfile.TemporaryDirectory(prefix="docfusion-ocr-") as tmp:
            pages = await asyncio.to_thread(
                self.pdf_handler.rasterize, source, Path(tmp)
            )
            results = await self.pool.recognize_batch(pages, self.language)

        text = PAGE_SEPARATOR.join(r.text for r in results)
        attempt = ExtractionAttempt(
            method=self.name,
            text=text,
            page_count=len(pages),
            confidence=score_text(text, self.base_confidence),
        )
        for page_number, result in enumerate(results, 1):
            attempt.warnings.extend(f"page {page_number}: {w}" for w in result.warnings)
        failed = [r for r in results if not r.succeeded]
        if not results or len(failed) == len(results):
            attempt.errors.extend(e for r in failed for e in r.errors)
            attempt.errors.append("no page could be recognized")
        attempt.processing_time_ms = (time.perf_counter() - start) * 1000
        return attempt


class RawMarkerStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Scan raw PDF bytes for literal strings inside ``BT ... ET`` objects.

    A last resort for damaged files that no parser can open. Only
    uncompressed content streams yield text.

    Args:
        max_bytes: Number of leading bytes to scan.
    """

    name = "raw-scan"
    base_confidence = 0.3

    def __init__(self, max_bytes: int = 100_000) -> None:
        self.max_bytes = max_bytes

    async def attempt(self, source: Path) -> ExtractionAttempt:
        start = time.perf_counter()
        data = await asyncio.to_thread(self._read_head, source)
        text = extract_text_objects(data)
        return ExtractionAttempt(
            method=self.name,
            text=text,
            page_count=len(_PAGE_OBJECT.findall(data)),
            confidence=score_text(text, self.base_confidence),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )

    def _read_head(self, path: Path) -> bytes:
        with open(path, "rb") as f:
            return f.read(self.max_bytes)


def _unescape(literal: bytes) -> bytes:
    out = bytearray()
    i = 0
    while i < len(literal):
        ch = literal[i : i + 1]
        if ch == b"\\" and i + 1 < len(literal):
            nxt = literal[i + 1 : i + 2]
            out += _ESCAPES.get(nxt, nxt)
            i += 2
            continue
        out += ch
        i += 1
    return bytes(out)


def extract_text_objects(data: bytes) -> str:
    """Collect literal strings from PDF text objects.

    Args:
        data: Raw PDF bytes.

    Returns:
        One line per text object, strings separated by spaces.
    """
    lines: list[str] = []
    for block in _TEXT_OBJECT.findall(data):
        parts = [
            _unescape(m[1:-1]).decode("latin-1")
            for m in _LITERAL_STRING.findall(block)
        ]
        line = " ".join(p.strip() for p in parts if p.strip())
        if line:
            lines.append(line)
    return "\n".join(lines)


class ImageOcrStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Recognize a scanned image through the OCR pool.

    Args:
        pool: Shared OCR worker pool.
        language: OCR language, defaults to the pool default.
    """

    name = "ocr-image"
    base_confidence = 0.6

    def __init__(self, pool: OCRWorkerPool, language: str | None = None) -> None:
        self.pool = pool
        self.language = language

    async def attempt(self, source: Path) -> ExtractionAttempt:
        attempt = await self.pool.recognize(source, self.language)
        attempt.method = self.name
        if attempt.succeeded:
            attempt.confidence = score_text(attempt.text, self.base_confidence)
        return attempt


class PlainTextStrategy(ExtractionStrategy[Path, ExtractionAttempt]):
    """Read a plain text file."""

    name = "plain-text"
    base_confidence = 0.9

    async def attempt(self, source: Path) -> ExtractionAttempt:
        start = time.perf_counter()
        text = await asyncio.to_thread(
            source.read_text, encoding="utf-8", errors="replace"
        )
        return ExtractionAttempt(
            method=self.name,
            text=text,
            page_count=1,
            confidence=score_text(text, self.base_confidence),
            processing_time_ms=(time.perf_counter() - start) * 1000,
        )
