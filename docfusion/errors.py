"""Exception hierarchy for the document metadata extraction system.

Only validation and programmer errors are raised to callers. Strategy and
service failures are caught at their boundary and reported inside result
objects.
"""


class DocfusionError(Exception):
    """Base class for all errors raised by this package."""


class DocumentValidationError(DocfusionError, ValueError):
    """The input document is missing or of an unsupported type."""


class StrategyFailure(DocfusionError):
    """A single extraction strategy failed or produced unusable output.

    Args:
        method: Name of the strategy that failed.
        message: Human-readable failure reason.
    """

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.message = message


class CascadeExhausted(DocfusionError):
    """Every strategy of a cascade failed.

    Args:
        errors: Accumulated per-strategy error messages.
    """

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors) or "All extraction methods failed")
        self.errors = errors


class CacheError(DocfusionError):
    """The result cache could not be read or written."""


class CacheNotInitializedError(CacheError):
    """The result cache was used before ``initialize()`` completed."""


class AIServiceError(DocfusionError):
    """The AI metadata service failed or returned an unusable response."""
