"""Table detection in plain text and table confidence scoring.

Text tables are found as runs of lines that split into several columns.
Each run picks the separator that yields the most columns on a sample of
its lines.
"""

import re
from collections.abc import Callable

from docfusion.utils.logger import get_logger

from .models import Table

logger = get_logger(__name__)

SAMPLE_LINES = 5
MIN_ROWS = 2
MIN_COLS = 2
MAX_CELL_LENGTH = 60

_MULTI_SPACE = re.compile(r"\s{2,}")
_NUMERIC = re.compile(r"^[\$€£(+\-]?\s*\d[\d,]*(?:\.\d+)?\)?%?$")
_HAS_LETTER = re.compile(r"[A-Za-z]")


def _split_spaces(line: str) -> list[str]:
    return _MULTI_SPACE.split(line.strip())


def _split_tabs(line: str) -> list[str]:
    return line.strip().split("\t")


def _split_pipes(line: str) -> list[str]:
    return line.strip().strip("|").split("|")


def _split_commas(line: str) -> list[str]:
    return line.strip().split(",")


SEPARATORS: dict[str, Callable[[str], list[str]]] = {
    "multi-space": _split_spaces,
    "tab": _split_tabs,
    "pipe": _split_pipes,
    "comma": _split_commas,
}


def split_line(line: str, separator: str) -> list[str]:
    """Split a line into stripped cells.

    Args:
        line: Raw text line.
        separator: Key of :data:`SEPARATORS`.

    Returns:
        Cells, or an empty list when the line is not tabular under the
        separator (fewer than two cells or an overlong cell).
    """
    cells = [c.strip() for c in SEPARATORS[separator](line)]
    if len(cells) < MIN_COLS or any(len(c) > MAX_CELL_LENGTH for c in cells):
        return []
    return cells


def is_tabular(line: str) -> bool:
    return any(split_line(line, sep) for sep in SEPARATORS)


def choose_separator(lines: list[str]) -> str:
    """Pick the separator with the highest average column count.

    Args:
        lines: Lines of one candidate block; the first few are sampled.

    Returns:
        The winning separator key. Ties go to the earlier separator.
    """
    sample = lines[:SAMPLE_LINES]
    best, best_avg = "multi-space", -1.0
    for sep in SEPARATORS:
        avg = sum(len(split_line(line, sep)) for line in sample) / len(sample)
        if avg > best_avg:
            best, best_avg = sep, avg
    return best


def is_numeric(cell: str) -> bool:
    return bool(_NUMERIC.match(cell.strip()))


def pad_grid(rows: list[list[str]]) -> list[list[str]]:
    """Pad short rows with empty cells so the grid is rectangular."""
    width = max((len(r) for r in rows), default=0)
    return [[*r, *[""] * (width - len(r))] for r in rows]


def _looks_like_header(row: list[str]) -> bool:
    return bool(row) and all(
        c and _HAS_LETTER.search(c) and not is_numeric(c) for c in row
    )


def score_table(rows: list[list[str]]) -> float:
    """Score how table-like a set of rows is.

    Adds 0.3 when every row has the same column count, 0.4 times the share
    of non-empty cells, 0.2 times the share of numeric cells among the
    non-empty ones, and 0.1 when the first row looks like a header.

    Args:
        rows: Raw rows before padding.

    Returns:
        Confidence capped at 1.0, 0.0 for an empty table.
    """
    if not rows:
        return 0.0
    grid = pad_grid(rows)
    total = len(grid) * len(grid[0]) if grid[0] else 0
    if total == 0:
        return 0.0

    cells = [c for row in grid for c in row if c]
    score = 0.0
    if len({len(r) for r in rows}) == 1:
        score += 0.3
    score += 0.4 * len(cells) / total
    if cells:
        score += 0.2 * sum(1 for c in cells if is_numeric(c)) / len(cells)
    if _looks_like_header(rows[0]):
        score += 0.1
    return min(score, 1.0)


def build_table(
    rows: list[list[str]], page: int, index: int, method: str
) -> Table:
    """Pad and score raw rows into a :class:`Table`."""
    grid = pad_grid(rows)
    return Table(
        page=page,
        index=index,
        rows=len(grid),
        cols=len(grid[0]) if grid else 0,
        grid=grid,
        confidence=score_table(rows),
        method=method,
    )


def _candidate_blocks(lines: list[str]) -> list[list[str]]:
    blocks: list[list[str]] = []
    current: list[str] = []
    for line in lines:
        if line.strip() and is_tabular(line):
            current.append(line)
            continue
        if current:
            blocks.append(current)
            current = []
    if current:
        blocks.append(current)
    return blocks


def _row_runs(lines: list[str], separator: str) -> list[list[list[str]]]:
    runs: list[list[list[str]]] = []
    current: list[list[str]] = []
    for line in lines:
        cells = split_line(line, separator)
        if cells:
            current.append(cells)
            continue
        if current:
            runs.append(current)
            current = []
    if current:
        runs.append(current)
    return runs


def detect_tables(
    text: str,
    method: str = "column-split",
    min_confidence: float = 0.3,
) -> list[Table]:
    """Find column-separated tables in document text.

    Pages are separated by form feeds; tables are numbered per page.

    Args:
        text: Document text.
        method: Method label stored on each table.
        min_confidence: Tables scoring below this are dropped.

    Returns:
        Detected tables in reading order.
    """
    tables: list[Table] = []
    for page_number, page_text in enumerate(text.split("\f"), 1):
        index = 0
        for block in _candidate_blocks(page_text.splitlines()):
            separator = choose_separator(block)
            for rows in _row_runs(block, separator):
                if len(rows) < MIN_ROWS:
                    continue
                table = build_table(rows, page_number, index, method)
                if table.confidence < min_confidence:
                    logger.debug(
                        "Dropped %dx%d block on page %d (confidence %.2f)",
                        table.rows,
                        table.cols,
                        page_number,
                        table.confidence,
                    )
                    continue
                tables.append(table)
                index += 1
    return tables
