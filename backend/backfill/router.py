"""
Backfill - API Router

Administrative endpoints:
- POST /api/backfill/{agency_id}/{source_table} - Backfill one legacy table
- GET  /api/backfill/tables - List backfillable tables
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.internal_auth import require_internal_service, InternalService
from utils.validation_errors import validate_required_uuid

from .orchestrator import BackfillOrchestrator
from .sources import SOURCE_TABLES

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/backfill", tags=["Backfill"])


@router.get("/tables")
async def list_tables(service: InternalService = Depends(require_internal_service)):
    return {"tables": list(SOURCE_TABLES)}


@router.post("/{agency_id}/{source_table}")
async def run_table_backfill(
    agency_id: str,
    source_table: str,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Run the three-pass contact backfill for one table.

    Row failures are reported in the response and do not abort the run.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    if source_table not in SOURCE_TABLES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid source_table. Valid values: {list(SOURCE_TABLES)}"
        )

    logger.info(
        f"Backfill of {source_table} requested by {service.name}",
        extra={"agency_id": str(agency_uuid)}
    )
    result = await BackfillOrchestrator(db).run_backfill(agency_uuid, source_table)
    return result.to_dict()
