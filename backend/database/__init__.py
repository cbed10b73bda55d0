from .connection import (
    get_db, get_engine, get_session_factory, build_engine, build_session_factory,
    init_db, dispose_engine, Base
)

# Import pipeline models to ensure they are registered with Base
from .pipeline_models import (
    LeadSourceDB, HouseholdDB, QuoteDB, SaleDB, SalePolicyDB, LinkedSaleDB
)

# Legacy module tables processed by the backfill
from .source_models import (
    CancelAuditRecordDB, RenewalRecordDB, WinbackHouseholdDB
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'build_engine', 'build_session_factory',
    'init_db', 'dispose_engine', 'Base',
    # Pipeline models
    'LeadSourceDB', 'HouseholdDB', 'QuoteDB', 'SaleDB', 'SalePolicyDB', 'LinkedSaleDB',
    # Legacy source tables
    'CancelAuditRecordDB', 'RenewalRecordDB', 'WinbackHouseholdDB',
]
