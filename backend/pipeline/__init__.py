"""
Pipeline Module

Lead -> quote -> sale intake. Every event resolves the customer contact
first; sales are matched to their household synchronously.
"""

from .service import (
    PipelineService,
    SalePolicyInput,
    LeadIntakeResult,
    SaleRecordResult,
    create_lead_source,
)

__all__ = [
    'PipelineService',
    'SalePolicyInput',
    'LeadIntakeResult',
    'SaleRecordResult',
    'create_lead_source',
]
