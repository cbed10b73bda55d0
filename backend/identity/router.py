"""
Identity - API Router

REST endpoints for contact resolution and the activity timeline:
- POST /api/identity/{agency_id}/contacts/resolve - Find or create a contact
- GET  /api/identity/{agency_id}/contacts/{contact_id} - Get a contact
- GET  /api/identity/{agency_id}/contacts/{contact_id}/profile - Contact with linked records
- POST /api/identity/{agency_id}/activities - Append a timeline entry
- GET  /api/identity/{agency_id}/activities - Read the timeline

All endpoints require internal service authentication. The agency id in
the path is the only scope used.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field, EmailStr
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from middleware.internal_auth import require_internal_service, InternalService
from models.enums import CallDirection, SourceModule
from utils.validation_errors import validate_required_uuid, validate_optional_uuid

from .activity import ActivityLogger
from .profile import ContactProfileService
from .service import ContactResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/identity", tags=["Identity"])


# ==================== REQUEST MODELS ====================

class ResolveContactRequest(BaseModel):
    """Customer facts from any lifecycle module"""
    last_name: str = Field(..., min_length=1, max_length=100)
    first_name: Optional[str] = Field(None, max_length=100)
    zip_code: Optional[str] = Field(None, max_length=10)
    phone: Optional[str] = Field(None, max_length=50)
    email: Optional[EmailStr] = None
    street_address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)


class LogActivityRequest(BaseModel):
    contact_id: str = Field(..., description="Contact the event belongs to")
    source_module: SourceModule
    activity_type: str = Field(..., min_length=1, max_length=50)
    activity_subtype: Optional[str] = Field(None, max_length=50)
    phone: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None
    outcome: Optional[str] = Field(None, max_length=100)
    call_direction: Optional[CallDirection] = None
    call_duration_seconds: Optional[int] = Field(None, ge=0)
    source_record_id: Optional[str] = Field(None, max_length=100)
    created_by_display_name: Optional[str] = Field(None, max_length=100)


# ==================== ENDPOINTS ====================

@router.get("/status")
async def get_identity_status():
    """Module status. No authentication required."""
    return {
        "status": "ok",
        "module": "identity",
        "features": {
            "contact_resolution": True,
            "activity_timeline": True,
            "contact_profile": True,
        }
    }


@router.post("/{agency_id}/contacts/resolve")
async def resolve_contact(
    agency_id: str,
    request: ResolveContactRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """
    Resolve customer facts to the agency's canonical contact.

    **Priority:** phone already on file, then household key, then create.
    """
    agency_uuid = validate_required_uuid(agency_id, "agency_id")

    try:
        result = await ContactResolver(db).resolve_contact(
            agency_id=agency_uuid,
            last_name=request.last_name,
            first_name=request.first_name,
            zip_code=request.zip_code,
            phone=request.phone,
            email=request.email,
            street_address=request.street_address,
            city=request.city,
            state=request.state,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"success": True, **result.to_dict()}


@router.get("/{agency_id}/contacts/{contact_id}")
async def get_contact(
    agency_id: str,
    contact_id: str,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    contact_uuid = validate_required_uuid(contact_id, "contact_id")

    contact = await ContactResolver(db).get_contact(agency_uuid, contact_uuid)
    if not contact:
        raise HTTPException(status_code=404, detail="Contact not found")

    return contact.to_dict()


@router.get("/{agency_id}/contacts/{contact_id}/profile")
async def get_contact_profile(
    agency_id: str,
    contact_id: str,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """Contact with its households, linked sales, module records, timeline and lifecycle stage."""
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    contact_uuid = validate_required_uuid(contact_id, "contact_id")

    profile = await ContactProfileService(db).get_profile(agency_uuid, contact_uuid)
    if profile is None:
        raise HTTPException(status_code=404, detail="Contact not found")

    return profile.to_dict()


@router.post("/{agency_id}/activities", status_code=201)
async def log_activity(
    agency_id: str,
    request: LogActivityRequest,
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """Append an entry to a contact's timeline. Entries are never edited."""
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    contact_uuid = validate_required_uuid(request.contact_id, "contact_id")

    try:
        activity = await ActivityLogger(db).log_activity(
            contact_id=contact_uuid,
            agency_id=agency_uuid,
            source_module=request.source_module,
            activity_type=request.activity_type,
            activity_subtype=request.activity_subtype,
            phone=request.phone,
            notes=request.notes,
            outcome=request.outcome,
            call_direction=request.call_direction,
            call_duration_seconds=request.call_duration_seconds,
            source_record_id=request.source_record_id,
            created_by_display_name=request.created_by_display_name or service.name,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return activity.to_dict()


@router.get("/{agency_id}/activities")
async def list_activities(
    agency_id: str,
    contact_id: Optional[str] = Query(None),
    phone: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    service: InternalService = Depends(require_internal_service)
):
    """Timeline newest first, filterable by contact and canonical phone."""
    agency_uuid = validate_required_uuid(agency_id, "agency_id")
    contact_uuid = validate_optional_uuid(contact_id, "contact_id")

    activities = await ActivityLogger(db).list_timeline(
        agency_uuid, contact_id=contact_uuid, phone=phone, limit=limit
    )
    return {
        "activities": [a.to_dict() for a in activities],
        "count": len(activities),
    }
