"""Tests for evidence aggregation."""
from __future__ import annotations

import itertools
from types import SimpleNamespace

import pytest

from forge.config import DEFAULT_SCORING_CONFIG
from forge.evidence import aggregate_evidence, item_weight


def _item(source_type: str, content: str = "Customer described the problem in detail on a call"):
    return SimpleNamespace(source_type=source_type, content=content)


class TestItemWeight:
    def test_source_types_ordered(self):
        weights = [item_weight(s, "x" * 40) for s in ("analytics", "sales_call", "ticket", "email", "other")]
        assert weights == sorted(weights, reverse=True)
        assert len(set(weights)) == 5

    def test_near_empty_content_is_discounted(self):
        full = item_weight("ticket", "Export to CSV keeps timing out on large reports")
        short = item_weight("ticket", "+1")
        assert short == pytest.approx(full * DEFAULT_SCORING_CONFIG.near_empty_discount)

    def test_whitespace_only_counts_as_empty(self):
        assert item_weight("ticket", "   ") < item_weight("ticket", "x" * 40)

    def test_unknown_source_counts_as_other(self):
        assert item_weight("carrier_pigeon", "x" * 40) == item_weight("other", "x" * 40)


class TestAggregateEvidence:
    def test_empty_set_is_exactly_zero(self):
        signal = aggregate_evidence([])
        assert signal.strength == 0.0
        assert signal.count == 0
        assert signal.weighted_volume == 0.0

    def test_strength_bounded(self):
        for n in (1, 5, 50, 500):
            signal = aggregate_evidence([_item("analytics")] * n)
            assert 0.0 < signal.strength <= 1.0

    def test_order_independent(self):
        items = [_item("ticket"), _item("analytics", "Dashboard shows 40% drop-off"),
                 _item("email", "ok"), _item("sales_call")]
        results = {aggregate_evidence(list(p)).strength for p in itertools.permutations(items)}
        assert len(results) == 1

    def test_more_evidence_never_weakens(self):
        items = []
        previous = aggregate_evidence(items).strength
        for source in ("other", "email", "ticket", "sales_call", "analytics") * 3:
            items.append(_item(source))
            current = aggregate_evidence(items).strength
            assert current > previous
            previous = current

    def test_saturates(self):
        five = aggregate_evidence([_item("ticket")] * 5).strength
        twenty = aggregate_evidence([_item("ticket")] * 20).strength
        assert twenty > five
        assert twenty < 4 * five

    def test_analytics_outweighs_email(self):
        assert aggregate_evidence([_item("analytics")]).strength > aggregate_evidence([_item("email")]).strength

    def test_counts_by_source(self):
        signal = aggregate_evidence([_item("ticket"), _item("ticket"), _item("email")])
        assert signal.count == 3
        assert signal.by_source == {"email": 1, "ticket": 2}
