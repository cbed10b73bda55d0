"""
Sale Reconciliation Module

Matches closed sales back to the pipeline households that produced them:
- Versioned scoring rules with qualitative confidence labels
- Auto-linking for unambiguous high-confidence matches
- Attention flags for everything a human must decide
- Idempotent linkage (database-enforced identity tuple)
"""

from reconciliation.matching_rules.sale_rules import (
    SaleMatchingRules,
    MatchCandidate,
    MatchResult,
    RULES_VERSION,
)
from reconciliation.services.sale_link_service import (
    SaleLinkService,
    LinkResult,
    SalesBackfillResult,
    log_sale_link_event,
)

__all__ = [
    # Matching Rules
    'SaleMatchingRules',
    'MatchCandidate',
    'MatchResult',
    'RULES_VERSION',
    # Service
    'SaleLinkService',
    'LinkResult',
    'SalesBackfillResult',
    'log_sale_link_event',
]
