"""Sequential strategy cascade with pluggable stop and selection policies.

Both the text and the table cascades are instances of the same loop: try
strategies in order, record every failure, and let a policy decide when to
stop and which attempt wins.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from docfusion.utils.logger import get_logger

logger = get_logger(__name__)

SourceT = TypeVar("SourceT")
AttemptT = TypeVar("AttemptT")


class ExtractionStrategy(ABC, Generic[SourceT, AttemptT]):
    """One way of extracting content from a source.

    Attempts must expose ``succeeded``, ``confidence`` and ``errors``.
    """

    name: str = "strategy"

    @abstractmethod
    async def attempt(self, source: SourceT) -> AttemptT:
        """Run the strategy once.

        Raising is allowed; the runner records the exception as a failure.
        """


class CascadePolicy(ABC):
    """Decides which attempts are usable, which wins, and when to stop."""

    @abstractmethod
    def rejection(self, attempt: Any) -> str | None:
        """Return why an attempt is unusable, or ``None`` if usable."""

    @abstractmethod
    def select(self, best: Any | None, attempt: Any) -> Any:
        """Return the winner between the current best and a usable attempt."""

    @abstractmethod
    def should_stop(self, best: Any | None, index: int) -> bool:
        """Return True when no further strategy needs to run."""


class FirstAcceptable(CascadePolicy):
    """Stop at the first successful attempt with enough text.

    Args:
        min_text_length: Minimum stripped text length to accept.
    """

    def __init__(self, min_text_length: int = 50) -> None:
        self.min_text_length = min_text_length

    def rejection(self, attempt: Any) -> str | None:
        if not attempt.succeeded:
            return "; ".join(attempt.errors)
        length = len(attempt.text.strip())
        if length < self.min_text_length:
            return f"extracted text too short ({length} < {self.min_text_length})"
        return None

    def select(self, best: Any | None, attempt: Any) -> Any:
        return attempt

    def should_stop(self, best: Any | None, index: int) -> bool:
        return best is not None


class BestOfAll(CascadePolicy):
    """Keep the highest-confidence successful attempt.

    The primary (first) strategy short-circuits the cascade when it succeeds
    at or above ``min_confidence``. Otherwise every strategy runs and a later
    attempt replaces the best only with strictly higher confidence.

    Args:
        min_confidence: Primary confidence needed to skip the fallbacks.
        has_primary: Whether the first strategy is a primary that may
            short-circuit. Without one, every strategy runs.
    """

    def __init__(self, min_confidence: float = 0.7, has_primary: bool = True) -> None:
        self.min_confidence = min_confidence
        self.has_primary = has_primary

    def rejection(self, attempt: Any) -> str | None:
        if not attempt.succeeded:
            return "; ".join(attempt.errors) or "no result"
        return None

    def select(self, best: Any | None, attempt: Any) -> Any:
        if best is None or attempt.confidence > best.confidence:
            return attempt
        return best

    def should_stop(self, best: Any | None, index: int) -> bool:
        if not self.has_primary or index != 0:
            return False
        return best is not None and best.confidence >= self.min_confidence


@dataclass
class CascadeOutcome(Generic[AttemptT]):
    """Winner and failure log of one cascade run."""

    best: AttemptT | None
    errors: list[str] = field(default_factory=list)
    attempted: list[str] = field(default_factory=list)


async def run_cascade(
    strategies: list[ExtractionStrategy[SourceT, AttemptT]],
    source: SourceT,
    policy: CascadePolicy,
    timeout: float | None = None,
) -> CascadeOutcome[AttemptT]:
    """Run strategies strictly in order under a policy.

    Args:
        strategies: Strategies in priority order.
        source: Input passed to every strategy.
        policy: Stop and selection policy.
        timeout: Per-strategy timeout in seconds, ``None`` for no limit.

    Returns:
        The winning attempt (or ``None``) and ``"<method>: <reason>"`` errors
        for every strategy that failed or was rejected.
    """
    outcome: CascadeOutcome[AttemptT] = CascadeOutcome(best=None)

    for index, strategy in enumerate(strategies):
        outcome.attempted.append(strategy.name)
        try:
            attempt = await asyncio.wait_for(strategy.attempt(source), timeout)
        except TimeoutError:
            logger.warning("Strategy %s timed out after %ss", strategy.name, timeout)
            outcome.errors.append(f"{strategy.name}: timed out after {timeout}s")
            continue
        except Exception as exc:
            logger.warning("Strategy %s failed: %s", strategy.name, exc)
            outcome.errors.append(f"{strategy.name}: {exc}")
            continue

        reason = policy.rejection(attempt)
        if reason is not None:
            logger.info("Strategy %s rejected: %s", strategy.name, reason)
            outcome.errors.append(f"{strategy.name}: {reason}")
        else:
            outcome.best = policy.select(outcome.best, attempt)

        if policy.should_stop(outcome.best, index):
            break

    return outcome
