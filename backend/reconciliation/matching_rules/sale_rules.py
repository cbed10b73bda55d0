"""
Sale Matching Rules

Scores open pipeline households against a closed sale.

Scoring factors (per candidate household):
- product type matches a quoted product       +40
- sale producer matches household/quote producer +35
- sale premium within tolerance of quoted total  +25
- a quote is dated on or before the sale date    +10

Confidence labels:
- High: the only candidate, or best score >= high threshold with a strict lead
- Medium: best score >= medium threshold
- Low: anything else, including a tie at the top

The rules are pure: they never read or write the database.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Any, List, Optional, Sequence

from config import get_settings
from models.enums import ConfidenceLabel, AttentionReason

RULES_VERSION = "sale-rules-v1"


@dataclass
class MatchCandidate:
    """A scored household candidate."""
    household_id: uuid.UUID
    score: int
    scoring_breakdown: Dict[str, int]
    status: str
    lead_source_id: Optional[uuid.UUID] = None
    attention_reason: Optional[str] = None

    @property
    def in_source_conflict(self) -> bool:
        return self.attention_reason == AttentionReason.SOURCE_CONFLICT.value


@dataclass
class MatchResult:
    """
    Result of matching one sale. Carries a qualitative confidence label;
    the numeric scores are kept only for review screens.
    """
    sale_id: uuid.UUID
    candidates: List[MatchCandidate] = field(default_factory=list)
    best_match: Optional[MatchCandidate] = None
    confidence: Optional[ConfidenceLabel] = None
    attention_reason: Optional[AttentionReason] = None
    tied_household_ids: List[uuid.UUID] = field(default_factory=list)
    rules_version: str = RULES_VERSION

    @property
    def auto_linkable(self) -> bool:
        return (
            self.best_match is not None
            and self.confidence == ConfidenceLabel.HIGH
            and self.attention_reason is None
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sale_id": str(self.sale_id),
            "candidates_count": len(self.candidates),
            "candidates": [
                {
                    "household_id": str(c.household_id),
                    "score": c.score,
                    "status": c.status,
                    "attention_reason": c.attention_reason,
                    "scoring_breakdown": c.scoring_breakdown,
                }
                for c in self.candidates
            ],
            "best_match": {
                "household_id": str(self.best_match.household_id),
                "confidence": self.confidence.value if self.confidence else None,
            } if self.best_match else None,
            "attention_reason": self.attention_reason.value if self.attention_reason else None,
            "tied_household_ids": [str(h) for h in self.tied_household_ids],
            "auto_linkable": self.auto_linkable,
            "rules_version": self.rules_version,
        }


class SaleMatchingRules:
    """
    Matching rules engine for sale -> household linkage.

    Operates on objects shaped like SaleDB / HouseholdDB (attribute access
    only) so the rules can be exercised without a database.
    """

    SCORE_PRODUCT = 40
    SCORE_PRODUCER = 35
    SCORE_PREMIUM = 25
    SCORE_QUOTE_BEFORE_SALE = 10

    def __init__(
        self,
        high_score: Optional[int] = None,
        medium_score: Optional[int] = None,
        premium_tolerance: Optional[float] = None
    ):
        settings = get_settings()
        self.high_score = settings.MATCH_HIGH_CONFIDENCE_SCORE if high_score is None else high_score
        self.medium_score = settings.MATCH_MEDIUM_CONFIDENCE_SCORE if medium_score is None else medium_score
        self.premium_tolerance = (
            settings.MATCH_PREMIUM_TOLERANCE if premium_tolerance is None else premium_tolerance
        )
        self.version = RULES_VERSION

    def evaluate(self, sale, households: Sequence[Any]) -> MatchResult:
        """
        Score every candidate and label the best one.

        Ties keep the oldest household first so results are deterministic,
        but a tie is never auto-linked.
        """
        result = MatchResult(sale_id=sale.id)
        if not households:
            return result

        scored = []
        for index, household in enumerate(households):
            score, breakdown = self.score(sale, household)
            scored.append((score, index, household, breakdown))
        scored.sort(key=lambda item: (-item[0], item[1]))

        result.candidates = [
            MatchCandidate(
                household_id=household.id,
                score=score,
                scoring_breakdown=breakdown,
                status=household.status,
                lead_source_id=household.lead_source_id,
                attention_reason=household.attention_reason,
            )
            for score, _, household, breakdown in scored
        ]
        result.best_match = result.candidates[0]

        best_score = result.best_match.score
        tied = [c for c in result.candidates if c.score == best_score]

        if len(result.candidates) == 1:
            result.confidence = ConfidenceLabel.HIGH
        elif len(tied) > 1:
            result.confidence = ConfidenceLabel.LOW
            result.tied_household_ids = [c.household_id for c in tied]
        elif best_score >= self.high_score:
            result.confidence = ConfidenceLabel.HIGH
        elif best_score >= self.medium_score:
            result.confidence = ConfidenceLabel.MEDIUM
        else:
            result.confidence = ConfidenceLabel.LOW

        if any(c.in_source_conflict for c in result.candidates):
            result.attention_reason = AttentionReason.SOURCE_CONFLICT
        elif result.tied_household_ids:
            result.attention_reason = AttentionReason.AMBIGUOUS_MATCH
        elif result.confidence != ConfidenceLabel.HIGH:
            result.attention_reason = AttentionReason.MANUAL_REVIEW

        return result

    def score(self, sale, household) -> tuple:
        """
        Score a single household against a sale.

        Returns:
            Tuple of (score, breakdown)
        """
        breakdown = {"product": 0, "producer": 0, "premium": 0, "quote_date": 0}
        quotes = list(household.quotes or [])

        sale_products = {
            (p.product_type or "").strip().lower()
            for p in sale.policies
            if p.product_type
        }
        quoted_products = {(q.product_type or "").strip().lower() for q in quotes}
        if sale_products & quoted_products:
            breakdown["product"] = self.SCORE_PRODUCT

        if sale.team_member_id is not None:
            producers = {q.team_member_id for q in quotes if q.team_member_id is not None}
            if household.team_member_id is not None:
                producers.add(household.team_member_id)
            if sale.team_member_id in producers:
                breakdown["producer"] = self.SCORE_PRODUCER

        quoted_premium = sum(q.premium_cents or 0 for q in quotes)
        sale_premium = sum(p.premium_cents or 0 for p in sale.policies)
        if quoted_premium > 0 and self._premium_within_tolerance(sale_premium, quoted_premium):
            breakdown["premium"] = self.SCORE_PREMIUM

        if self._quoted_before_sale(quotes, sale.sale_date):
            breakdown["quote_date"] = self.SCORE_QUOTE_BEFORE_SALE

        return sum(breakdown.values()), breakdown

    def _premium_within_tolerance(self, sale_premium: int, quoted_premium: int) -> bool:
        return abs(sale_premium - quoted_premium) <= quoted_premium * self.premium_tolerance

    @staticmethod
    def _quoted_before_sale(quotes, sale_date: Optional[date]) -> bool:
        if sale_date is None:
            return False
        return any(q.quote_date is not None and q.quote_date <= sale_date for q in quotes)
