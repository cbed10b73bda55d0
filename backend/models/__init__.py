from .enums import (
    SourceModule,
    HouseholdStatus,
    AttentionReason,
    SaleMatchStatus,
    ConfidenceLabel,
    ResolutionMatchType,
    CallDirection,
    LifecycleStage,
)

__all__ = [
    'SourceModule',
    'HouseholdStatus',
    'AttentionReason',
    'SaleMatchStatus',
    'ConfidenceLabel',
    'ResolutionMatchType',
    'CallDirection',
    'LifecycleStage',
]
