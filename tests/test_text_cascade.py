"""Tests for the text extraction cascade and its strategies."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from docfusion.errors import CascadeExhausted, DocumentValidationError, StrategyFailure
from docfusion.text.cascade import TextExtractionCascade, document_kind
from docfusion.text.models import ExtractionAttempt
from docfusion.text.strategies import (
    PdfToTextStrategy,
    PlainTextStrategy,
    RawMarkerStrategy,
    extract_text_objects,
    run_command,
    score_text,
)
from docfusion.utils.config import AppConfig, TextExtractionConfig

GOOD_TEXT = "Invoice 2024 for Acme Corp, billing contact billing@acme.example"


class CountingStrategy:
    """Strategy recording how often it ran."""

    def __init__(self, name: str, text: str = "", error: str | None = None) -> None:
        self.name = name
        self.text = text
        self.error = error
        self.calls = 0

    async def attempt(self, source: Path) -> ExtractionAttempt:
        self.calls += 1
        attempt = ExtractionAttempt(
            method=self.name, text=self.text, page_count=1, confidence=0.8
        )
        if self.error:
            attempt.errors.append(self.error)
        return attempt


@pytest.fixture
def pdf_file(tmp_path: Path) -> Path:
    path = tmp_path / "doc.pdf"
    path.write_bytes(b"%PDF-1.4\n")
    return path


class TestDocumentKind:
    """Tests for document classification and validation."""

    @pytest.mark.parametrize(
        ("name", "kind"),
        [("a.pdf", "pdf"), ("a.PNG", "image"), ("a.tiff", "image"), ("a.txt", "text")],
    )
    def test_kinds(self, name: str, kind: str) -> None:
        assert document_kind(Path(name)) == kind

    def test_unsupported_raises(self) -> None:
        with pytest.raises(DocumentValidationError, match="Unsupported file type"):
            document_kind(Path("a.docx"))

    def test_missing_file_raises_before_any_strategy(self, tmp_path: Path) -> None:
        strategy = CountingStrategy("a", GOOD_TEXT)
        cascade = TextExtractionCascade({"pdf": [strategy]})

        with pytest.raises(DocumentValidationError, match="File not found"):
            asyncio.run(cascade.extract(tmp_path / "missing.pdf"))
        assert strategy.calls == 0


class TestTextExtractionCascade:
    """Tests for first-acceptable extraction."""

    def test_first_acceptable_stops_later_strategies(self, pdf_file: Path) -> None:
        short = CountingStrategy("pdf-text-layer", "tiny")
        good = CountingStrategy("pdftotext", GOOD_TEXT)
        never = CountingStrategy("ocr", GOOD_TEXT)
        cascade = TextExtractionCascade(
            {"pdf": [short, good, never]}, min_text_length=20
        )

        result = asyncio.run(cascade.extract(pdf_file))

        assert result.success
        assert result.method == "pdftotext"
        assert result.text == GOOD_TEXT
        assert (short.calls, good.calls, never.calls) == (1, 1, 0)
        assert result.errors == ["pdf-text-layer: extracted text too short (4 < 20)"]
        assert result.attempts == ["pdf-text-layer", "pdftotext"]
        assert result.file_size_bytes == pdf_file.stat().st_size

    def test_exhaustion_collects_every_error(self, pdf_file: Path) -> None:
        cascade = TextExtractionCascade(
            {
                "pdf": [
                    CountingStrategy("pdf-text-layer", error="encrypted"),
                    CountingStrategy("raw-scan", "x"),
                ]
            },
            min_text_length=20,
        )

        result = asyncio.run(cascade.extract(pdf_file))

        assert not result.success
        assert result.text == ""
        assert result.errors == [
            "pdf-text-layer: encrypted",
            "raw-scan: extracted text too short (1 < 20)",
            "All extraction methods failed",
        ]
        with pytest.raises(CascadeExhausted):
            result.raise_for_status()

    def test_plain_text_file(self, invoice_file: Path) -> None:
        cascade = TextExtractionCascade({"text": [PlainTextStrategy()]})

        result = asyncio.run(cascade.extract(invoice_file))

        assert result.success
        assert result.method == "plain-text"
        assert "Acme Corp" in result.text

    def test_from_config_honours_switches(self) -> None:
        config = AppConfig(
            text=TextExtractionConfig(enable_ocr=False, enable_raw_scan=False)
        )
        cascade = TextExtractionCascade.from_config(config, pool=None)

        assert [s.name for s in cascade.strategies["pdf"]] == [
            "pdf-text-layer",
            "pdftotext",
        ]
        assert [s.name for s in cascade.strategies["image"]] == ["ocr-image"]


class TestScoreText:
    """Tests for text quality scoring."""

    def test_base_only(self) -> None:
        assert score_text("12", 0.5) == pytest.approx(0.5)

    def test_all_signals(self) -> None:
        text = "Contact info@example.com in 2024. " + "a" * 1100
        assert score_text(text, 0.6) == pytest.approx(1.0)

    def test_alpha_and_year(self) -> None:
        assert score_text("Invoice 2024", 0.3) == pytest.approx(0.5)


class TestRawMarkerStrategy:
    """Tests for the raw PDF byte scan."""

    RAW_PDF = (
        b"%PDF-1.4\n1 0 obj << /Type /Page >> endobj\n"
        b"BT /F1 12 Tf (Hello \\(World\\)) Tj ET\n"
        b"BT (Second) Tj ( line) Tj ET\n"
    )

    def test_extract_text_objects(self) -> None:
        assert extract_text_objects(self.RAW_PDF) == "Hello (World)\nSecond line"

    def test_attempt_counts_pages(self, tmp_path: Path) -> None:
        path = tmp_path / "damaged.pdf"
        path.write_bytes(self.RAW_PDF)

        attempt = asyncio.run(RawMarkerStrategy().attempt(path))

        assert attempt.method == "raw-scan"
        assert attempt.page_count == 1
        assert attempt.text.startswith("Hello")


class TestPdfToTextStrategy:
    """Tests for the pdftotext subprocess strategy."""

    def test_reads_text_and_page_count(self, pdf_file: Path) -> None:
        mock_run = AsyncMock(side_effect=["Page one\fPage two\f", "Pages:   2\n"])
        with patch("docfusion.text.strategies.run_command", mock_run):
            attempt = asyncio.run(PdfToTextStrategy().attempt(pdf_file))

        assert attempt.text == "Page one\fPage two"
        assert attempt.page_count == 2
        assert attempt.warnings == []

    def test_missing_pdfinfo_is_a_warning(self, pdf_file: Path) -> None:
        mock_run = AsyncMock(
            side_effect=["Some text", StrategyFailure("pdfinfo", "not installed")]
        )
        with patch("docfusion.text.strategies.run_command", mock_run):
            attempt = asyncio.run(PdfToTextStrategy().attempt(pdf_file))

        assert attempt.succeeded
        assert attempt.page_count == 0
        assert "page count unavailable" in attempt.warnings[0]


class TestRunCommand:
    """Tests for subprocess execution."""

    def test_nonzero_exit_raises(self) -> None:
        with pytest.raises(StrategyFailure):
            asyncio.run(run_command(["false"], timeout=5))

    def test_timeout_kills_process(self) -> None:
        with pytest.raises(StrategyFailure, match="timed out"):
            asyncio.run(run_command(["sleep", "5"], timeout=0.1))
