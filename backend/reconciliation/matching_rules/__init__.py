"""
Matching Rules Module
"""

from .sale_rules import SaleMatchingRules, MatchCandidate, MatchResult, RULES_VERSION

__all__ = ["SaleMatchingRules", "MatchCandidate", "MatchResult", "RULES_VERSION"]
