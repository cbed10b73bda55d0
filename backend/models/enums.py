from enum import Enum


class SourceModule(str, Enum):
    """Lifecycle modules that reference a customer."""
    LQS = "lqs"
    CANCEL_AUDIT = "cancel_audit"
    RENEWAL = "renewal"
    WINBACK = "winback"


class HouseholdStatus(str, Enum):
    OPEN = "open"
    QUOTED = "quoted"
    SOLD = "sold"


class AttentionReason(str, Enum):
    """Why a household needs a human decision."""
    MISSING_LEAD_SOURCE = "missing_lead_source"
    SOURCE_CONFLICT = "source_conflict"
    MANUAL_REVIEW = "manual_review"
    AMBIGUOUS_MATCH = "ambiguous_match"


class SaleMatchStatus(str, Enum):
    PENDING = "pending"
    LINKED = "linked"
    NEEDS_REVIEW = "needs_review"
    NO_MATCH = "no_match"


class ConfidenceLabel(str, Enum):
    """Qualitative match quality returned by the sale matcher."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ResolutionMatchType(str, Enum):
    PHONE = "phone"
    HOUSEHOLD_KEY = "household_key"
    CREATED = "created"


class CallDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class LifecycleStage(str, Enum):
    """Where a contact sits across the lifecycle modules."""
    WINBACK = "winback"
    CANCEL_AUDIT = "cancel_audit"
    CUSTOMER = "customer"
    RENEWAL = "renewal"
    QUOTED = "quoted"
    OPEN_LEAD = "open_lead"
