"""Field merging and confidence weighting.

Pure functions over small candidate lists, so the fusion rules can be
tested without building an engine.
"""

from dataclasses import dataclass, field

from docfusion.utils.config import DEFAULT_FIELD_WEIGHTS

from .models import (
    CORE_FIELDS,
    SOURCE_AI,
    SOURCE_NONE,
    SOURCE_REGEX,
    SOURCE_TABLE,
    FieldCandidate,
    FieldValue,
)


@dataclass(frozen=True)
class MergePolicy:
    """How competing candidates for one field are resolved.

    Attributes:
        priority_order: Sources in trust order; the first whose candidate
            exceeds the acceptance floor wins.
        acceptance_floor: Confidence a candidate must exceed to win on
            priority alone.
        prefer_ai_fields: Fields for which an AI candidate overrides local
            candidates scoring below ``prefer_ai_below``. Empty by default.
        prefer_ai_below: Local confidence under which the AI override
            applies.
    """

    priority_order: tuple[str, ...] = (SOURCE_REGEX, SOURCE_TABLE, SOURCE_AI)
    acceptance_floor: float = 0.3
    prefer_ai_fields: frozenset[str] = field(default_factory=frozenset)
    prefer_ai_below: float = 0.5

    def rank(self, source: str) -> int:
        if source in self.priority_order:
            return self.priority_order.index(source)
        return len(self.priority_order)


def _best_per_source(candidates: list[FieldCandidate]) -> dict[str, FieldCandidate]:
    best: dict[str, FieldCandidate] = {}
    for cand in candidates:
        current = best.get(cand.source)
        if current is None or cand.confidence > current.confidence:
            best[cand.source] = cand
    return best


def merge_field(
    name: str,
    candidates: list[FieldCandidate],
    policy: MergePolicy | None = None,
) -> FieldValue:
    """Pick the winning value of one field.

    Candidates without a value are ignored. The first source in priority
    order whose confidence exceeds the acceptance floor wins; when none
    does, the most confident candidate wins, ties going to the higher
    priority source.

    Args:
        name: Field name, used by the AI override.
        candidates: Proposals from every source.
        policy: Merge policy, defaults to regex > table > ai with floor 0.3.

    Returns:
        The winning value, or an empty value with source ``"none"``.
    """
    policy = policy or MergePolicy()
    present = [c for c in candidates if c.value not in (None, "")]
    if not present:
        return FieldValue(None, 0.0, SOURCE_NONE)

    by_source = _best_per_source(present)

    ai = by_source.get(SOURCE_AI)
    if ai is not None and name in policy.prefer_ai_fields:
        local = [c.confidence for s, c in by_source.items() if s != SOURCE_AI]
        if not local or max(local) < policy.prefer_ai_below:
            return FieldValue(ai.value, ai.confidence, ai.source)

    for source in policy.priority_order:
        cand = by_source.get(source)
        if cand is not None and cand.confidence > policy.acceptance_floor:
            return FieldValue(cand.value, cand.confidence, cand.source)

    winner = max(
        by_source.values(), key=lambda c: (c.confidence, -policy.rank(c.source))
    )
    return FieldValue(winner.value, winner.confidence, winner.source)


def weighted_confidence(
    fields: dict[str, FieldValue],
    weights: dict[str, float] | None = None,
) -> float:
    """Combine field confidences, counting only fields that have a value.

    Args:
        fields: Merged fields by name.
        weights: Weight per field name.

    Returns:
        ``sum(confidence * weight) / sum(weight)`` over present fields, or
        0.0 when no weighted field has a value.
    """
    weights = weights or DEFAULT_FIELD_WEIGHTS
    total_weight = 0.0
    weighted_sum = 0.0
    for name, weight in weights.items():
        value = fields.get(name)
        if value is None or not value.value:
            continue
        total_weight += weight
        weighted_sum += value.confidence * weight
    return weighted_sum / total_weight if total_weight else 0.0


def core_confidence(fields: dict[str, FieldValue]) -> float:
    """Mean of the non-zero client, date and type confidences.

    This is the local score the AI decision is made on. Title and amount are
    left out, so a weak title never triggers an AI call by itself.
    """
    scores = [
        fields[name].confidence
        for name in CORE_FIELDS
        if name in fields and fields[name].confidence > 0
    ]
    return sum(scores) / len(scores) if scores else 0.0


def methods_used(fields: dict[str, FieldValue]) -> list[str]:
    """Distinct sources of winning fields, in first-seen order, without ``none``."""
    seen: list[str] = []
    for value in fields.values():
        if value.source != SOURCE_NONE and value.source not in seen:
            seen.append(value.source)
    return seen
