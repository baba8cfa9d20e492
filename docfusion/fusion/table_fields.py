"""Field candidates read from labelled table cells."""

import re
from decimal import Decimal, InvalidOperation

from docfusion.ai.response import normalize_date
from docfusion.tables.models import Table

from .models import SOURCE_TABLE, FieldCandidate

TABLE_CONFIDENCE_FACTOR = 0.9

TABLE_LABELS: dict[str, frozenset[str]] = {
    "client_name": frozenset(
        {"bill to", "billed to", "sold to", "customer", "client", "account holder"}
    ),
    "date": frozenset(
        {"date", "invoice date", "issue date", "statement date", "date issued"}
    ),
    "amount": frozenset(
        {
            "total",
            "total amount",
            "total due",
            "amount due",
            "balance due",
            "grand total",
        }
    ),
}

_ALL_LABELS = frozenset().union(*TABLE_LABELS.values())
_CURRENCY = re.compile(r"[\$€£,\s]|USD|EUR|GBP")


def _normalize_label(cell: str) -> str:
    return re.sub(r"\s+", " ", cell.strip().rstrip(":").strip().lower())


def _normalize_value(field_name: str, value: str) -> str | None:
    value = value.strip()
    if not value or _normalize_label(value) in _ALL_LABELS:
        return None
    if field_name == "date":
        return normalize_date(value)
    if field_name == "amount":
        try:
            return f"{Decimal(_CURRENCY.sub('', value)):.2f}"
        except InvalidOperation:
            return None
    if not re.search(r"[A-Za-z]", value):
        return None
    return value


def _neighbour_values(table: Table, row: int, col: int) -> list[str]:
    values = []
    if col + 1 < table.cols:
        values.append(table.grid[row][col + 1])
    if row + 1 < table.rows:
        values.append(table.grid[row + 1][col])
    return values


def fields_from_tables(tables: list[Table]) -> dict[str, FieldCandidate]:
    """Read field values next to label cells.

    A label cell's value is taken from its right neighbour, or from the cell
    below when the right one is empty, unusable or another label.

    Args:
        tables: Tables found in the document.

    Returns:
        The most confident candidate per field, confidence scaled from the
        table's confidence.
    """
    found: dict[str, FieldCandidate] = {}
    for table in tables:
        confidence = table.confidence * TABLE_CONFIDENCE_FACTOR
        for r, row in enumerate(table.grid):
            for c, cell in enumerate(row):
                label = _normalize_label(cell)
                for field_name, labels in TABLE_LABELS.items():
                    if label not in labels:
                        continue
                    current = found.get(field_name)
                    if current is not None and current.confidence >= confidence:
                        continue
                    for raw in _neighbour_values(table, r, c):
                        value = _normalize_value(field_name, raw)
                        if value is not None:
                            found[field_name] = FieldCandidate(
                                value, confidence, SOURCE_TABLE
                            )
                            break
    return found
