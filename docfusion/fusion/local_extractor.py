"""Pattern and keyword based metadata extraction.

Finds the client name, date, document type, amount and title in document
text and scores each field from the evidence around it.
"""

import re
from collections.abc import Iterable
from datetime import date as date_type
from decimal import Decimal, InvalidOperation
from difflib import SequenceMatcher

from docfusion.utils.logger import get_logger

from .merge import core_confidence
from .models import SOURCE_NONE, SOURCE_REGEX, FieldValue, LocalExtraction

logger = get_logger(__name__)

DOCUMENT_TYPE_KEYWORDS: dict[str, list[str]] = {
    "Invoice": [
        "invoice",
        "invoice number",
        "bill",
        "billing",
        "amount due",
        "payment due",
    ],
    "Resume": [
        "resume",
        "curriculum vitae",
        "work experience",
        "employment history",
        "education",
        "skills",
    ],
    "Contract": [
        "contract",
        "agreement",
        "terms and conditions",
        "parties",
        "hereby",
        "effective date",
    ],
    "Statement": [
        "statement",
        "account summary",
        "opening balance",
        "closing balance",
        "balance",
    ],
    "Receipt": [
        "receipt",
        "paid",
        "thank you for your purchase",
        "cashier",
        "change due",
    ],
    "Proposal": ["proposal", "scope of work", "deliverables", "quotation", "estimate"],
    "Report": ["report", "executive summary", "findings", "analysis", "conclusion"],
    "Letter": [
        "dear",
        "sincerely",
        "yours truly",
        "kind regards",
        "to whom it may concern",
    ],
    "Tax Document": ["tax return", "irs", "w-2", "1099", "taxable", "withholding"],
    "Legal Document": ["court", "plaintiff", "defendant", "attorney", "jurisdiction"],
}

AMOUNT_DOCUMENT_TYPES = frozenset({"Invoice", "Receipt"})

HEADER_LINES = 10
CONTEXT_WINDOW = 50

DATE_CONTEXT_KEYWORDS = (
    "date",
    "issued",
    "created",
    "generated",
    "printed",
    "due",
    "expires",
    "valid",
    "effective",
)

CLIENT_CONTEXT_KEYWORDS = (
    "bill to",
    "billed to",
    "invoice to",
    "to:",
    "from",
    "vendor",
    "supplier",
    "company",
    "customer",
    "account holder",
    "payee",
)

# Label groups in priority order; the first group with a usable value wins.
_CLIENT_LABEL_GROUPS: list[str] = [
    r"bill(?:ed)?\s*to|invoice\s*to|to",
    r"from|vendor|supplier|company|client",
    r"customer|account\s*holder|payee",
]
_CLIENT_VALUE = re.compile(r"^[A-Za-z0-9&.,'\- ]{2,80}$")

_MONTHS = (
    "january|february|march|april|may|june|july|august|september|october|"
    "november|december|jan|feb|mar|apr|jun|jul|aug|sep|sept|oct|nov|dec"
)
_MONTH_NUMBERS = {
    name: index
    for index, names in enumerate(
        [
            ("january", "jan"),
            ("february", "feb"),
            ("march", "mar"),
            ("april", "apr"),
            ("may",),
            ("june", "jun"),
            ("july", "jul"),
            ("august", "aug"),
            ("september", "sep", "sept"),
            ("october", "oct"),
            ("november", "nov"),
            ("december", "dec"),
        ],
        1,
    )
    for name in names
}

# Pattern definitions: (regex, group order, is_iso)
_DATE_PATTERNS: list[tuple[re.Pattern[str], str, bool]] = [
    (re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b"), "ymd", True),
    (re.compile(r"\b(\d{4})/(\d{1,2})/(\d{1,2})\b"), "ymd", False),
    (re.compile(r"\b(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{4})\b"), "mdy", False),
    (
        re.compile(rf"\b({_MONTHS})\.?\s+(\d{{1,2}}),?\s+(\d{{4}})\b", re.I),
        "Mdy",
        False,
    ),
    (
        re.compile(rf"\b(\d{{1,2}})\s+({_MONTHS})\.?,?\s+(\d{{4}})\b", re.I),
        "dMy",
        False,
    ),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{2})\b"), "mdy", False),
]

_LABELED_AMOUNT = re.compile(
    r"\b(?:grand\s+total|total\s+amount|total\s+due|amount\s+due|balance\s+due|total)"
    r"\s*[:\-]?\s*(?:USD|EUR|GBP)?\s*[\$€£]?\s*(\d[\d,]*(?:\.\d{2})?)\b",
    re.IGNORECASE,
)
_CURRENCY_AMOUNT = re.compile(r"[\$€£]\s*(\d[\d,]*\.\d{2})\b")

_TITLE_SKIP = [
    re.compile(r"\bpage\s+\d+", re.I),
    re.compile(r"^\d+\s+of\s+\d+$", re.I),
    re.compile(r"^[\W\d_]+$"),
    re.compile(r"^[^:]{1,40}:\s*\S"),
]


def _find_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    lowered = text.lower()
    return [kw for kw in keywords if kw in lowered]


def _context(text: str, start: int, end: int) -> str:
    return text[max(0, start - CONTEXT_WINDOW) : end + CONTEXT_WINDOW]


def _to_date(order: str, groups: tuple[str, ...]) -> date_type | None:
    parts = dict(zip(order, groups, strict=True))
    try:
        year = int(parts["y"])
        if year < 100:
            year += 2000
        if "M" in parts:
            month = _MONTH_NUMBERS[parts["M"].lower()]
        else:
            month = int(parts["m"])
        day = int(parts["d"])
        if "M" not in parts and month > 12 and day <= 12:
            month, day = day, month
        return date_type(year, month, day)
    except (KeyError, ValueError):
        return None


def _similarity(a: str, b: str) -> float:
    return SequenceMatcher(None, a.lower(), b.lower()).ratio()


class LocalExtractor:
    """Extracts metadata fields with regular expressions and keyword lists.

    Args:
        known_clients: Client names to match when no labelled client is found.
        client_match_threshold: Minimum similarity for a fuzzy client match.
    """

    def __init__(
        self,
        known_clients: list[str] | None = None,
        client_match_threshold: float = 0.6,
    ) -> None:
        self.known_clients = known_clients or []
        self.client_match_threshold = client_match_threshold
        self._client_patterns = [
            re.compile(rf"^\s*(?:{labels})\s*[:\-]\s*(.*)$", re.IGNORECASE)
            for labels in _CLIENT_LABEL_GROUPS
        ]
        self._keyword_patterns = {
            doc_type: [
                re.compile(rf"(?<!\w){re.escape(kw)}(?!\w)", re.IGNORECASE)
                for kw in keywords
            ]
            for doc_type, keywords in DOCUMENT_TYPE_KEYWORDS.items()
        }

    def extract(self, text: str) -> LocalExtraction:
        """Extract every field from document text.

        Args:
            text: Document text.

        Returns:
            Per-field values with confidences, and the mean of the non-zero
            core field confidences as the overall local confidence.
        """
        doc_type = self.extract_document_type(text)
        fields = {
            "client_name": self.extract_client_name(text),
            "date": self.extract_date(text),
            "document_type": doc_type,
            "amount": (
                self.extract_amount(text)
                if doc_type.value in AMOUNT_DOCUMENT_TYPES
                else FieldValue()
            ),
            "title": self.extract_title(text),
        }
        confidence = core_confidence(fields)
        logger.debug(
            "Local extraction found %d fields (confidence %.2f)",
            sum(1 for f in fields.values() if f.value),
            confidence,
        )
        return LocalExtraction(fields=fields, confidence=confidence)

    def extract_document_type(self, text: str) -> FieldValue:
        """Classify the document by keyword frequency.

        Confidence is the keyword hit count over 5 (capped at 1), plus 0.2
        when a keyword appears in the first lines, capped at 1.
        """
        header = "\n".join(text.splitlines()[:HEADER_LINES])
        best_type, best_hits, best_in_header = None, 0, False
        for doc_type, patterns in self._keyword_patterns.items():
            hits = sum(len(p.findall(text)) for p in patterns)
            if hits > best_hits:
                best_type, best_hits = doc_type, hits
                best_in_header = any(p.search(header) for p in patterns)

        if best_type is None:
            return FieldValue()
        confidence = min(best_hits / 5, 1.0)
        if best_in_header:
            confidence += 0.2
        return FieldValue(best_type, min(confidence, 1.0), SOURCE_REGEX)

    def extract_date(self, text: str) -> FieldValue:
        """Find the first valid date, trying patterns in order.

        Confidence is the number of distinct date keywords near the match
        over 2 (capped at 1), plus 0.2 for ISO formatted dates, capped at 1.
        """
        for pattern, order, is_iso in _DATE_PATTERNS:
            for match in pattern.finditer(text):
                parsed = _to_date(order, match.groups())
                if parsed is None:
                    continue
                context = _context(text, match.start(), match.end())
                hits = len(_find_keywords(context, DATE_CONTEXT_KEYWORDS))
                confidence = min(hits / 2, 1.0)
                if is_iso:
                    confidence += 0.2
                return FieldValue(
                    parsed.isoformat(), min(confidence, 1.0), SOURCE_REGEX
                )
        return FieldValue()

    def extract_client_name(self, text: str) -> FieldValue:
        """Find a labelled client name, else fuzzy match a known client.

        Confidence is the mean of the context keyword density (distinct
        keywords near the match over 3, capped at 1) and a length score
        (name length over 20, capped at 1).
        """
        lines = text.splitlines()
        for pattern in self._client_patterns:
            for index, line in enumerate(lines):
                match = pattern.match(line)
                if not match:
                    continue
                value = match.group(1).strip()
                if not value:
                    following = (ln.strip() for ln in lines[index + 1 :])
                    value = next((ln for ln in following if ln), "")
                name = self._clean_client(value)
                if name is None:
                    continue
                offset = text.find(line)
                return self._score_client(text, name, offset, offset + len(line))

        matched = self.match_known_client(text)
        if matched is not None:
            name, offset = matched
            return self._score_client(text, name, offset, offset + len(name))
        return FieldValue()

    @staticmethod
    def _clean_client(value: str) -> str | None:
        value = re.sub(r"[^\w\s\-&.,']", "", value).strip(" .,-")
        if not _CLIENT_VALUE.match(value) or not 2 < len(value) < 100:
            return None
        if not re.search(r"[A-Za-z]", value):
            return None
        return value

    def _score_client(self, text: str, name: str, start: int, end: int) -> FieldValue:
        context = _context(text, max(start, 0), end)
        hits = len(_find_keywords(context, CLIENT_CONTEXT_KEYWORDS))
        density = min(hits / 3, 1.0)
        length_score = min(len(name) / 20, 1.0)
        return FieldValue(name, (density + length_score) / 2, SOURCE_REGEX)

    def match_known_client(self, text: str) -> tuple[str, int] | None:
        """Match the configured client list against the text.

        Exact (case-insensitive) occurrences win; otherwise each line is
        compared by similarity against the threshold.

        Returns:
            The matched client name and its offset in the text, or ``None``.
        """
        if not self.known_clients:
            return None
        lowered = text.lower()
        for client in self.known_clients:
            pos = lowered.find(client.lower())
            if pos >= 0:
                return client, pos

        best: tuple[str, int] | None = None
        best_score = 0.0
        for line in text.splitlines():
            candidate = line.strip()
            if len(candidate) < 3:
                continue
            for client in self.known_clients:
                score = _similarity(candidate, client)
                if score >= self.client_match_threshold and score > best_score:
                    best, best_score = (client, text.find(line)), score
        return best

    def extract_amount(self, text: str) -> FieldValue:
        """Find the document total.

        Labelled totals (confidence 0.7) beat bare currency amounts
        (confidence 0.5); within a kind the largest amount wins.
        """
        for pattern, confidence in ((_LABELED_AMOUNT, 0.7), (_CURRENCY_AMOUNT, 0.5)):
            amounts: list[Decimal] = []
            for match in pattern.finditer(text):
                try:
                    amounts.append(Decimal(match.group(1).replace(",", "")))
                except InvalidOperation:
                    continue
            if amounts:
                return FieldValue(f"{max(amounts):.2f}", confidence, SOURCE_REGEX)
        return FieldValue()

    def extract_title(self, text: str) -> FieldValue:
        """Use the first meaningful line of the header as the title."""
        for line in text.splitlines()[:HEADER_LINES]:
            candidate = line.strip()
            if not 3 <= len(candidate) <= 100:
                continue
            if any(p.search(candidate) for p in _TITLE_SKIP):
                continue
            return FieldValue(candidate, 0.4, SOURCE_REGEX)
        return FieldValue(None, 0.0, SOURCE_NONE)
