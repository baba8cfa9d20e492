"""Table extraction strategies.

The primary strategy reads ruled tables with pdfplumber. The fallbacks work
on extracted text: column splitting and line-pattern matching.
"""

import asyncio
import re
import time
from pathlib import Path

import pdfplumber

from docfusion.cascade.runner import ExtractionStrategy
from docfusion.utils.logger import get_logger

from .detection import MIN_ROWS, build_table, detect_tables
from .models import Table, TableExtractionResult, TableSource

logger = get_logger(__name__)

TableStrategy = ExtractionStrategy[TableSource, TableExtractionResult]

PDFPLUMBER_SETTINGS: dict[str, object] = {
    "vertical_strategy": "lines_strict",
    "horizontal_strategy": "lines_strict",
    "snap_tolerance": 3,
    "join_tolerance": 3,
    "intersection_tolerance": 3,
}

# Row patterns: description, quantity, unit price, line total
_LINE_ITEM = re.compile(
    r"^(?P<description>[A-Za-z].*?)\s+(?P<quantity>\d+(?:\.\d+)?)\s+"
    r"(?P<unit_price>[\$€£]?\s?[\d,]+\.\d{2})\s+"
    r"(?P<total>[\$€£]?\s?[\d,]+\.\d{2})\s*$"
)
# Label: value
_KEY_VALUE = re.compile(
    r"^(?P<label>[A-Za-z][A-Za-z0-9 .#/&()'\-]{1,40}):"
    r"\s*(?P<value>\S.*)$"
)

ROW_PATTERNS: dict[str, re.Pattern[str]] = {
    "line-item": _LINE_ITEM,
    "key-value": _KEY_VALUE,
}


def _timed(result: TableExtractionResult, start: float) -> TableExtractionResult:
    result.processing_time_ms = (time.perf_counter() - start) * 1000
    return result


class PdfPlumberTableStrategy(TableStrategy):
    """Extract ruled tables from a PDF with pdfplumber.

    Args:
        table_settings: pdfplumber table finder settings.
    """

    name = "pdfplumber"

    def __init__(self, table_settings: dict[str, object] | None = None) -> None:
        self.table_settings = table_settings or PDFPLUMBER_SETTINGS

    async def attempt(self, source: TableSource) -> TableExtractionResult:
        start = time.perf_counter()
        tables = await asyncio.to_thread(self._read, source.path)
        return _timed(TableExtractionResult.from_tables(self.name, tables), start)

    def _read(self, path: Path) -> list[Table]:
        tables: list[Table] = []
        with pdfplumber.open(path) as pdf:
            for page_number, page in enumerate(pdf.pages, 1):
                raw_tables = page.extract_tables(table_settings=self.table_settings)
                for raw in raw_tables or []:
                    rows = [
                        [(cell or "").strip() for cell in row]
                        for row in raw
                        if row and any(cell and cell.strip() for cell in row)
                    ]
                    if not rows:
                        continue
                    index = sum(1 for t in tables if t.page == page_number)
                    tables.append(build_table(rows, page_number, index, self.name))
        logger.debug("pdfplumber found %d tables in %s", len(tables), path.name)
        return tables


class ColumnSplitStrategy(TableStrategy):
    """Detect column-aligned tables in the document text.

    Args:
        min_confidence: Tables scoring below this are dropped.
    """

    name = "column-split"

    def __init__(self, min_confidence: float = 0.3) -> None:
        self.min_confidence = min_confidence

    async def attempt(self, source: TableSource) -> TableExtractionResult:
        start = time.perf_counter()
        text = await source.text()
        tables = detect_tables(text, self.name, self.min_confidence)
        return _timed(TableExtractionResult.from_tables(self.name, tables), start)


def match_row_tables(
    text: str, method: str = "regex", min_confidence: float = 0.3
) -> list[Table]:
    """Group consecutive lines matching the same row pattern into tables.

    Args:
        text: Document text, pages separated by form feeds.
        method: Method label stored on each table.
        min_confidence: Tables scoring below this are dropped.

    Returns:
        Tables of at least two rows.
    """
    tables: list[Table] = []
    for page_number, page_text in enumerate(text.split("\f"), 1):
        index = 0
        runs: list[list[list[str]]] = []
        current: list[list[str]] = []
        current_kind: str | None = None

        for line in page_text.splitlines():
            kind, cells = None, None
            for name, pattern in ROW_PATTERNS.items():
                match = pattern.match(line.strip())
                if match:
                    kind, cells = name, [g.strip() for g in match.groups()]
                    break
            if kind != current_kind and current:
                runs.append(current)
                current = []
            current_kind = kind
            if cells:
                current.append(cells)
        if current:
            runs.append(current)

        for rows in runs:
            if len(rows) < MIN_ROWS:
                continue
            table = build_table(rows, page_number, index, method)
            if table.confidence >= min_confidence:
                tables.append(table)
                index += 1
    return tables


class RegexTableStrategy(TableStrategy):
    """Build tables from line-item and ``Label: value`` lines.

    Args:
        min_confidence: Tables scoring below this are dropped.
    """

    name = "regex"

    def __init__(self, min_confidence: float = 0.3) -> None:
        self.min_confidence = min_confidence

    async def attempt(self, source: TableSource) -> TableExtractionResult:
        start = time.perf_counter()
        text = await source.text()
        tables = match_row_tables(text, self.name, self.min_confidence)
        return _timed(TableExtractionResult.from_tables(self.name, tables), start)
