"""Tests for the generic cascade runner and its policies."""

import asyncio
from dataclasses import dataclass, field

import pytest

from docfusion.cascade.runner import (
    BestOfAll,
    ExtractionStrategy,
    FirstAcceptable,
    run_cascade,
)


@dataclass
class Attempt:
    """Minimal attempt object."""

    method: str
    text: str = ""
    confidence: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.errors


class FakeStrategy(ExtractionStrategy[str, Attempt]):
    """Strategy returning a canned attempt, raising, or sleeping."""

    def __init__(
        self,
        name: str,
        text: str = "",
        confidence: float = 0.5,
        raises: Exception | None = None,
        delay: float = 0.0,
        errors: list[str] | None = None,
    ) -> None:
        self.name = name
        self.text = text
        self.confidence = confidence
        self.raises = raises
        self.delay = delay
        self.errors = errors or []
        self.calls = 0

    async def attempt(self, source: str) -> Attempt:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raises is not None:
            raise self.raises
        return Attempt(self.name, self.text, self.confidence, list(self.errors))


class TestFirstAcceptable:
    """Tests for first-acceptable stopping."""

    def test_stops_at_first_acceptable(self) -> None:
        first = FakeStrategy("a", text="short")
        second = FakeStrategy("b", text="x" * 60)
        third = FakeStrategy("c", text="y" * 60)

        outcome = asyncio.run(
            run_cascade([first, second, third], "doc", FirstAcceptable(50))
        )

        assert outcome.best.method == "b"
        assert third.calls == 0
        assert outcome.attempted == ["a", "b"]
        assert outcome.errors == ["a: extracted text too short (5 < 50)"]

    def test_failed_attempt_errors_recorded(self) -> None:
        failing = FakeStrategy("a", errors=["no text layer"])
        outcome = asyncio.run(run_cascade([failing], "doc", FirstAcceptable(1)))

        assert outcome.best is None
        assert outcome.errors == ["a: no text layer"]

    def test_exception_recorded_and_next_tried(self) -> None:
        broken = FakeStrategy("a", raises=RuntimeError("boom"))
        good = FakeStrategy("b", text="enough text here")

        outcome = asyncio.run(run_cascade([broken, good], "doc", FirstAcceptable(5)))

        assert outcome.best.method == "b"
        assert outcome.errors == ["a: boom"]

    def test_timeout_recorded(self) -> None:
        slow = FakeStrategy("slow", text="never seen", delay=1.0)
        good = FakeStrategy("b", text="enough text here")

        outcome = asyncio.run(
            run_cascade([slow, good], "doc", FirstAcceptable(5), timeout=0.01)
        )

        assert outcome.best.method == "b"
        assert outcome.errors == ["slow: timed out after 0.01s"]

    def test_all_fail(self) -> None:
        outcome = asyncio.run(
            run_cascade(
                [FakeStrategy("a"), FakeStrategy("b", raises=OSError("gone"))],
                "doc",
                FirstAcceptable(5),
            )
        )
        assert outcome.best is None
        assert len(outcome.errors) == 2


class TestBestOfAll:
    """Tests for best-of-all selection."""

    def test_confident_primary_short_circuits(self) -> None:
        primary = FakeStrategy("primary", confidence=0.9)
        fallback = FakeStrategy("fallback", confidence=1.0)

        outcome = asyncio.run(run_cascade([primary, fallback], "doc", BestOfAll(0.7)))

        assert outcome.best.method == "primary"
        assert fallback.calls == 0

    def test_better_fallback_replaces_primary(self) -> None:
        primary = FakeStrategy("primary", confidence=0.5)
        fallback = FakeStrategy("fallback", confidence=0.9)

        outcome = asyncio.run(run_cascade([primary, fallback], "doc", BestOfAll(0.7)))

        assert outcome.best.method == "fallback"

    def test_equal_confidence_keeps_earlier(self) -> None:
        outcome = asyncio.run(
            run_cascade(
                [
                    FakeStrategy("primary", confidence=0.5),
                    FakeStrategy("a", confidence=0.6),
                    FakeStrategy("b", confidence=0.6),
                ],
                "doc",
                BestOfAll(0.7),
            )
        )
        assert outcome.best.method == "a"

    def test_without_primary_every_strategy_runs(self) -> None:
        first = FakeStrategy("a", confidence=0.9)
        second = FakeStrategy("b", confidence=0.95)

        outcome = asyncio.run(
            run_cascade([first, second], "doc", BestOfAll(0.7, has_primary=False))
        )

        assert second.calls == 1
        assert outcome.best.method == "b"

    def test_failed_primary_recorded(self) -> None:
        outcome = asyncio.run(
            run_cascade(
                [
                    FakeStrategy("primary", errors=["no tables found"]),
                    FakeStrategy("fallback", confidence=0.4),
                ],
                "doc",
                BestOfAll(0.7),
            )
        )
        assert outcome.best.method == "fallback"
        assert outcome.errors == ["primary: no tables found"]

    @pytest.mark.parametrize("confidence", [0.0, 0.69])
    def test_weak_primary_runs_fallbacks(self, confidence: float) -> None:
        fallback = FakeStrategy("fallback", confidence=0.1)
        asyncio.run(
            run_cascade(
                [FakeStrategy("primary", confidence=confidence), fallback],
                "doc",
                BestOfAll(0.7),
            )
        )
        assert fallback.calls == 1
