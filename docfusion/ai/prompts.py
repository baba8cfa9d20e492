"""Chat prompt for AI metadata extraction."""

import json
from dataclasses import dataclass, field

SYSTEM_PROMPT = (
    "You extract metadata from business documents. Reply with a single JSON "
    "object and nothing else, using exactly these keys: clientName, "
    "clientConfidence, date, dateConfidence, docType, docTypeConfidence, "
    "amount, amountConfidence, title, titleConfidence, snippets. Confidences "
    "are numbers between 0 and 1. Use null for values you cannot find. Dates "
    "use the format YYYY-MM-DD. snippets holds up to 5 short quotes from the "
    "document that support your answers."
)


@dataclass
class AIContext:
    """Side information sent with the document text."""

    file_name: str | None = None
    file_size_bytes: int | None = None
    modified_at: str | None = None
    local_entities: dict[str, str] = field(default_factory=dict)


def truncate_text(text: str, max_chars: int) -> str:
    """Trim text to a character budget, marking the cut."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "\n[... truncated ...]"


def build_messages(
    text: str, context: AIContext | None = None, max_chars: int = 4000
) -> list[dict[str, str]]:
    """Build the chat messages for one document.

    Args:
        text: Document text.
        context: File details and locally extracted entities.
        max_chars: Character budget for the document text.

    Returns:
        System and user messages for a chat-completions request.
    """
    parts: list[str] = []
    if context is not None:
        details = {
            "fileName": context.file_name,
            "fileSizeBytes": context.file_size_bytes,
            "modifiedAt": context.modified_at,
        }
        details = {k: v for k, v in details.items() if v is not None}
        if details:
            parts.append(f"File details: {json.dumps(details)}")
        if context.local_entities:
            parts.append(
                "Values found by pattern matching (may be wrong or incomplete): "
                f"{json.dumps(context.local_entities)}"
            )
    parts.append(f"Document text:\n{truncate_text(text, max_chars)}")

    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": "\n\n".join(parts)},
    ]
