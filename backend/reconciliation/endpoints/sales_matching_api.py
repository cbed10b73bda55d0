"""
Sales Matching API Endpoints

REST API for sale -> household matching:
- GET  /api/sales-matching/{agency_id}/sales/{sale_id}/match - Score candidates (read-only)
- POST /api/sales-matching/{agency_id}/link - Link a sale to a household (reviewer decision)
- POST /api/sales-matching/{agency_id}/backfill - Match every unmatched sale
- GET  /api/sales-matching/status - Module status
"""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database import get_db
from middleware.internal_auth import require_internal_service, InternalService
from reconciliation.matching_rules.sale_rules import RULES_VERSION
from reconciliation.services.sale_link_service import SaleLinkService
from utils.validation_errors import validate_required_uuid

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sales-matching", tags=["Sales Matching"])


# ==================== Request Models ====================

class LinkSaleRequest(BaseModel):
    """Reviewer-confirmed link of a sale to a household."""
    sale_id: str = Field(..., description="Sale ID")
    household_id: str = Field(..., description="Household ID")


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status():
    settings = get_settings()
    return {
        "module": "sales_matching",
        "status": "operational",
        "rules_version": RULES_VERSION,
        "thresholds": {
            "high": settings.MATCH_HIGH_CONFIDENCE_SCORE,
            "medium": settings.MATCH_MEDIUM_CONFIDENCE_SCORE,
            "premium_tolerance": settings.MATCH_PREMIUM_TOLERANCE,
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/{agency_id}/sales/{sale_id}/match", summary="Score candidate households")
async def match_sale(
    agency_id: str,
    sale_id: str,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Score candidate households for a sale without changing anything.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    sale_uuid = validate_required_uuid(sale_id, "sale_id")

    try:
        result = await SaleLinkService(db).match_sale_to_household(agency_uuid, sale_uuid)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return result.to_dict()


@router.post("/{agency_id}/link", summary="Link a sale to a household")
async def link_sale(
    agency_id: str,
    request: LinkSaleRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Record a reviewer's decision. Idempotent: repeating the call creates no
    additional linkage rows.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    sale_uuid = validate_required_uuid(request.sale_id, "sale_id")
    household_uuid = validate_required_uuid(request.household_id, "household_id")

    try:
        result = await SaleLinkService(db).link_sale_to_household(agency_uuid, household_uuid, sale_uuid)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(f"Sale {sale_uuid} linked by {service.name}", extra={"agency_id": str(agency_uuid)})
    return result.to_dict()


@router.post("/{agency_id}/backfill", summary="Match all unmatched sales")
async def backfill_sales(
    agency_id: str,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    agency_uuid = validate_required_uuid(agency_id, "agency_id")

    try:
        result = await SaleLinkService(db).backfill_sales_matching(agency_uuid)
    except Exception as e:
        logger.error(f"Sales matching backfill failed: {type(e).__name__}", extra={"agency_id": str(agency_uuid)})
        raise HTTPException(status_code=500, detail="Sales matching backfill failed")

    return result.to_dict()
