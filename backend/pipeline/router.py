"""
Pipeline - API Router

Intake endpoints for the lead / quote / sale pipeline:
- POST /api/pipeline/{agency_id}/lead-sources - Create a lead source
- POST /api/pipeline/{agency_id}/leads - Record a lead
- POST /api/pipeline/{agency_id}/households/{household_id}/quotes - Record a quote
- POST /api/pipeline/{agency_id}/sales - Record a sale (matched synchronously)
- POST /api/pipeline/{agency_id}/sales/{sale_id}/policies - Add a policy line
"""

import logging
from datetime import date
from typing import Optional, List

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.internal_auth import require_internal_service, InternalService
from utils.validation_errors import validate_required_uuid, validate_optional_uuid

from .service import PipelineService, SalePolicyInput, create_lead_source

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pipeline", tags=["Pipeline"])


# ==================== REQUEST MODELS ====================

class LeadSourceRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class LeadRequest(BaseModel):
    """Lead intake from the quoting module"""
    last_name: str = Field(..., min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    lead_source_id: Optional[str] = None
    team_member_id: Optional[str] = None


class QuoteRequest(BaseModel):
    product_type: str = Field(..., min_length=1, max_length=50)
    premium_cents: int = Field(..., ge=0)
    quote_date: Optional[date] = None
    team_member_id: Optional[str] = None
    items_quoted: int = Field(1, ge=1)


class SalePolicyRequest(BaseModel):
    product_type: str = Field(..., min_length=1, max_length=50)
    premium_cents: int = Field(..., ge=0)
    policy_number: Optional[str] = Field(None, max_length=50)
    items_count: int = Field(1, ge=1)

    def to_input(self) -> SalePolicyInput:
        return SalePolicyInput(
            product_type=self.product_type,
            premium_cents=self.premium_cents,
            policy_number=self.policy_number,
            items_count=self.items_count,
        )


class SaleRequest(BaseModel):
    """A closed sale with one or more policy lines"""
    last_name: str = Field(..., min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    street_address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    sale_date: date
    team_member_id: Optional[str] = None
    lead_source_id: Optional[str] = None
    policies: List[SalePolicyRequest] = Field(..., min_length=1)


# ==================== ENDPOINTS ====================

@router.post("/{agency_id}/lead-sources", status_code=201)
async def add_lead_source(
    agency_id: str,
    request: LeadSourceRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    try:
        source = await create_lead_source(db, agency_uuid, request.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"id": str(source.id), "name": source.name}


@router.post("/{agency_id}/leads")
async def record_lead(
    agency_id: str,
    request: LeadRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Record a lead.

    A lead from a second source for an open household is kept as its own
    household flagged `source_conflict` for review.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    source_uuid = validate_optional_uuid(request.lead_source_id, "lead_source_id")
    member_uuid = validate_optional_uuid(request.team_member_id, "team_member_id")

    try:
        result = await PipelineService(db).record_lead(
            agency_id=agency_uuid,
            last_name=request.last_name,
            first_name=request.first_name,
            zip_code=request.zip_code,
            phone=request.phone,
            email=request.email,
            lead_source_id=source_uuid,
            team_member_id=member_uuid,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return result.to_dict()


@router.post("/{agency_id}/households/{household_id}/quotes", status_code=201)
async def record_quote(
    agency_id: str,
    household_id: str,
    request: QuoteRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    household_uuid = validate_required_uuid(household_id, "household_id")
    member_uuid = validate_optional_uuid(request.team_member_id, "team_member_id")

    try:
        quote = await PipelineService(db).record_quote(
            agency_id=agency_uuid,
            household_id=household_uuid,
            product_type=request.product_type,
            premium_cents=request.premium_cents,
            quote_date=request.quote_date,
            team_member_id=member_uuid,
            items_quoted=request.items_quoted,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return quote.to_dict()


@router.post("/{agency_id}/sales", status_code=201)
async def record_sale(
    agency_id: str,
    request: SaleRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Record a sale and match it to its pipeline household.

    High-confidence matches are linked immediately; everything else is
    flagged for review on the household.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    source_uuid = validate_optional_uuid(request.lead_source_id, "lead_source_id")
    member_uuid = validate_optional_uuid(request.team_member_id, "team_member_id")

    try:
        result = await PipelineService(db).record_sale(
            agency_id=agency_uuid,
            last_name=request.last_name,
            sale_date=request.sale_date,
            policies=[p.to_input() for p in request.policies],
            first_name=request.first_name,
            zip_code=request.zip_code,
            phone=request.phone,
            email=request.email,
            street_address=request.street_address,
            city=request.city,
            state=request.state,
            team_member_id=member_uuid,
            lead_source_id=source_uuid,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return result.to_dict()


@router.post("/{agency_id}/sales/{sale_id}/policies", status_code=201)
async def add_sale_policy(
    agency_id: str,
    sale_id: str,
    request: SalePolicyRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    sale_uuid = validate_required_uuid(sale_id, "sale_id")

    try:
        result = await PipelineService(db).add_sale_policy(agency_uuid, sale_uuid, request.to_input())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return result.to_dict()
