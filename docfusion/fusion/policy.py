"""When to spend an AI call on a document."""

from .models import AnalyzeOptions, LocalExtraction

HIGH_CONFIDENCE = 0.7


def should_use_ai(
    local: LocalExtraction,
    options: AnalyzeOptions | None = None,
    threshold: float = 0.5,
) -> bool:
    """Decide whether local extraction needs AI help.

    Args:
        local: Pattern-based extraction result.
        options: Per-document options; ``force_ai`` always triggers.
        threshold: Local confidence below which AI is always used.

    Returns:
        True if forced, if local confidence is under ``threshold``, if more
        than one core field is missing, or if local confidence is under 0.7
        with any core field missing.
    """
    if options is not None and options.force_ai:
        return True
    if local.confidence < threshold:
        return True
    missing = len(local.missing_core_fields())
    if missing > 1:
        return True
    return local.confidence < HIGH_CONFIDENCE and missing >= 1
