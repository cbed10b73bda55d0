"""
Identity Module

Unified customer identity for an agency's lifecycle modules.

Features:
- Phone / household-key normalization
- Contact resolution (phone, then household key, then create)
- Monotonic phone and email sets
- Append-only cross-module activity timeline
"""

from .models import (
    ContactDB,
    ContactPhoneDB,
    ContactEmailDB,
    ActivityDB,
)
from .normalization import normalize_phone, generate_household_key
from .service import ContactResolver, ContactFacts, ResolutionResult, log_identity_event
from .activity import ActivityLogger

__all__ = [
    'ContactDB',
    'ContactPhoneDB',
    'ContactEmailDB',
    'ActivityDB',
    'normalize_phone',
    'generate_household_key',
    'ContactResolver',
    'ContactFacts',
    'ResolutionResult',
    'log_identity_event',
    'ActivityLogger',
]
