"""
Backfill Module

Re-runnable reconciliation of the legacy module tables against agency
contacts, plus the sale-matching backfill.
"""

from .orchestrator import BackfillOrchestrator, BackfillResult, AgencyBackfillReport
from .sources import SOURCE_TABLES, SourceTable, SourceRow, get_source_table

__all__ = [
    'BackfillOrchestrator',
    'BackfillResult',
    'AgencyBackfillReport',
    'SOURCE_TABLES',
    'SourceTable',
    'SourceRow',
    'get_source_table',
]
