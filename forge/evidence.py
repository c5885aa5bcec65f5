"""Evidence aggregation: reduce a feature's evidence items to one strength signal.

The signal is ``1 - exp(-V / saturation)`` where ``V`` is the weighted
volume of evidence: each item contributes its source-type weight, cut to
``near_empty_discount`` of that weight when its content is shorter than
``min_content_chars``.  The curve saturates, so twenty tickets are more
convincing than five but not four times as convincing, and it is exactly
``0.0`` for an empty set.
"""
from __future__ import annotations

import math
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from forge.config import DEFAULT_SCORING_CONFIG, ScoringConfig


@dataclass(frozen=True)
class EvidenceSignal:
    strength: float                      # in [0, 1]
    count: int
    weighted_volume: float
    by_source: dict[str, int] = field(default_factory=dict)


def item_weight(source_type: str, content: str, config: ScoringConfig = DEFAULT_SCORING_CONFIG) -> float:
    """Weight of a single evidence item; unknown source types count as ``other``."""
    weight = config.source_weights.get(source_type, config.source_weights["other"])
    if len((content or "").strip()) < config.min_content_chars:
        weight *= config.near_empty_discount
    return weight


def aggregate_evidence(
    items: Iterable[Any],
    config: ScoringConfig = DEFAULT_SCORING_CONFIG,
) -> EvidenceSignal:
    """Aggregate evidence items (anything with ``source_type`` and ``content``).

    Pure: the result depends only on the multiset of items, not their order.
    """
    weights: list[float] = []
    sources: Counter[str] = Counter()
    for item in items:
        source_type = getattr(item, "source_type", "other")
        weights.append(item_weight(source_type, getattr(item, "content", ""), config))
        sources[source_type] += 1

    if not weights:
        return EvidenceSignal(strength=0.0, count=0, weighted_volume=0.0)

    # fsum is exactly rounded, so the total does not depend on item order
    volume = math.fsum(weights)
    strength = 1.0 - math.exp(-volume / config.evidence_saturation)
    return EvidenceSignal(
        strength=min(1.0, max(0.0, strength)),
        count=len(weights),
        weighted_volume=volume,
        by_source=dict(sorted(sources.items())),
    )
