"""
Unit Tests for Sale Matching Rules

Tests the pure scoring engine:
- Factor scoring (product, producer, premium, quote date)
- Confidence labels and tie handling
- Attention reasons and auto-link eligibility

Run with: pytest tests/test_sale_matching_rules.py -v
"""

import uuid
from datetime import date
from types import SimpleNamespace

import pytest

from models.enums import ConfidenceLabel, AttentionReason
from reconciliation.matching_rules.sale_rules import SaleMatchingRules, RULES_VERSION

PRODUCER = uuid.uuid4()
SALE_DATE = date(2024, 3, 1)


def make_sale(product="auto", premium=50000, producer=PRODUCER, sale_date=SALE_DATE):
    return SimpleNamespace(
        id=uuid.uuid4(),
        sale_date=sale_date,
        team_member_id=producer,
        policies=[SimpleNamespace(product_type=product, premium_cents=premium)],
    )


def make_household(quotes=(), producer=None, attention_reason=None, lead_source_id=None):
    return SimpleNamespace(
        id=uuid.uuid4(),
        status="quoted" if quotes else "open",
        team_member_id=producer,
        lead_source_id=lead_source_id,
        attention_reason=attention_reason,
        quotes=list(quotes),
    )


def make_quote(product="auto", premium=50000, quote_date=date(2024, 2, 1), producer=PRODUCER):
    return SimpleNamespace(
        product_type=product,
        premium_cents=premium,
        quote_date=quote_date,
        team_member_id=producer,
    )


@pytest.fixture
def rules():
    return SaleMatchingRules(high_score=75, medium_score=50, premium_tolerance=0.10)


class TestScoring:
    """Per-household factor scores."""

    def test_full_match(self, rules):
        score, breakdown = rules.score(make_sale(), make_household([make_quote()]))

        assert breakdown == {"product": 40, "producer": 35, "premium": 25, "quote_date": 10}
        assert score == 110

    def test_no_quotes_scores_zero(self, rules):
        score, _ = rules.score(make_sale(), make_household())
        assert score == 0

    def test_product_match_is_case_insensitive(self, rules):
        _, breakdown = rules.score(make_sale(product="Auto"), make_household([make_quote(product="AUTO ")]))
        assert breakdown["product"] == 40

    def test_producer_from_household(self, rules):
        household = make_household([make_quote(producer=None)], producer=PRODUCER)
        _, breakdown = rules.score(make_sale(), household)
        assert breakdown["producer"] == 35

    def test_sale_without_producer_scores_no_producer_points(self, rules):
        _, breakdown = rules.score(make_sale(producer=None), make_household([make_quote()]))
        assert breakdown["producer"] == 0

    def test_premium_within_tolerance(self, rules):
        household = make_household([make_quote(premium=100000)])
        _, inside = rules.score(make_sale(premium=109000), household)
        _, outside = rules.score(make_sale(premium=120000), household)

        assert inside["premium"] == 25
        assert outside["premium"] == 0

    def test_premium_compared_against_total_quoted(self, rules):
        household = make_household([
            make_quote(product="auto", premium=30000),
            make_quote(product="home", premium=20000),
        ])
        _, breakdown = rules.score(make_sale(premium=50000), household)
        assert breakdown["premium"] == 25

    def test_quote_after_sale_gets_no_date_points(self, rules):
        household = make_household([make_quote(quote_date=date(2024, 4, 1))])
        _, breakdown = rules.score(make_sale(), household)
        assert breakdown["quote_date"] == 0

    def test_quote_on_sale_date_counts(self, rules):
        household = make_household([make_quote(quote_date=SALE_DATE)])
        _, breakdown = rules.score(make_sale(), household)
        assert breakdown["quote_date"] == 10


class TestEvaluate:
    """Confidence labels and review reasons."""

    def test_no_candidates(self, rules):
        result = rules.evaluate(make_sale(), [])

        assert result.best_match is None
        assert result.confidence is None
        assert result.auto_linkable is False

    def test_single_candidate_is_high_even_without_quotes(self, rules):
        household = make_household()
        result = rules.evaluate(make_sale(), [household])

        assert result.confidence == ConfidenceLabel.HIGH
        assert result.best_match.household_id == household.id
        assert result.attention_reason is None
        assert result.auto_linkable is True

    def test_clear_winner_is_high(self, rules):
        strong = make_household([make_quote()])
        weak = make_household()
        result = rules.evaluate(make_sale(), [weak, strong])

        assert result.best_match.household_id == strong.id
        assert result.confidence == ConfidenceLabel.HIGH
        assert result.auto_linkable is True
        assert [c.household_id for c in result.candidates] == [strong.id, weak.id]

    def test_medium_needs_manual_review(self, rules):
        # product + premium = 65
        medium = make_household([make_quote(producer=None, quote_date=date(2024, 5, 1))])
        result = rules.evaluate(make_sale(producer=None), [medium, make_household()])

        assert result.best_match.score == 65
        assert result.confidence == ConfidenceLabel.MEDIUM
        assert result.attention_reason == AttentionReason.MANUAL_REVIEW
        assert result.auto_linkable is False

    def test_low_score_needs_manual_review(self, rules):
        # quote date only = 10
        low = make_household([make_quote(product="home", premium=1, producer=None)])
        result = rules.evaluate(make_sale(producer=None), [low, make_household()])

        assert result.confidence == ConfidenceLabel.LOW
        assert result.attention_reason == AttentionReason.MANUAL_REVIEW

    def test_tie_is_ambiguous_and_never_auto_linked(self, rules):
        first = make_household([make_quote()])
        second = make_household([make_quote()])
        result = rules.evaluate(make_sale(), [first, second])

        assert result.confidence == ConfidenceLabel.LOW
        assert result.attention_reason == AttentionReason.AMBIGUOUS_MATCH
        assert set(result.tied_household_ids) == {first.id, second.id}
        assert result.best_match.household_id == first.id
        assert result.auto_linkable is False

    def test_source_conflict_blocks_auto_link(self, rules):
        strong = make_household([make_quote()])
        conflict = make_household(attention_reason=AttentionReason.SOURCE_CONFLICT.value)
        result = rules.evaluate(make_sale(), [strong, conflict])

        assert result.confidence == ConfidenceLabel.HIGH
        assert result.attention_reason == AttentionReason.SOURCE_CONFLICT
        assert result.auto_linkable is False

    def test_result_dict_carries_rules_version(self, rules):
        result = rules.evaluate(make_sale(), [make_household()])
        data = result.to_dict()

        assert data["rules_version"] == RULES_VERSION
        assert data["best_match"]["confidence"] == "high"
        assert data["auto_linkable"] is True
