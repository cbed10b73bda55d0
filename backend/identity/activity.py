"""
Identity - Activity Logger

Append-only, cross-module customer timeline. There is no update or delete
path; corrections are written as new entries.
"""

import uuid
import logging
from typing import Optional, List, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from models.enums import CallDirection, SourceModule
from .models import ContactDB, ActivityDB
from .normalization import normalize_phone, clean_text, coerce_uuid

logger = logging.getLogger(__name__)

MAX_TIMELINE_LIMIT = 500

_SOURCE_MODULES = {m.value for m in SourceModule}
_CALL_DIRECTIONS = {d.value for d in CallDirection}


class ActivityLogger:
    """Writes and reads the contact activity timeline."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_activity(
        self,
        contact_id: Union[uuid.UUID, str],
        agency_id: Union[uuid.UUID, str],
        source_module: Union[SourceModule, str],
        activity_type: str,
        activity_subtype: Optional[str] = None,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
        outcome: Optional[str] = None,
        call_direction: Optional[Union[CallDirection, str]] = None,
        call_duration_seconds: Optional[int] = None,
        source_record_id: Optional[str] = None,
        created_by_display_name: Optional[str] = None,
        commit: bool = True
    ) -> ActivityDB:
        """
        Append an event to a contact's timeline.

        The phone is stored in canonical form (or NULL when unparseable) so
        the timeline can be filtered by phone regardless of module.

        Raises:
            ValueError: Unknown module, missing activity type, bad call
                metadata, or a contact outside the agency
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        contact_id = coerce_uuid(contact_id, "contact_id")

        module = source_module.value if isinstance(source_module, SourceModule) else str(source_module)
        if module not in _SOURCE_MODULES:
            raise ValueError(f"Unknown source_module: {module}")

        activity_type = clean_text(activity_type)
        if not activity_type:
            raise ValueError("activity_type is required")

        if isinstance(call_direction, CallDirection):
            call_direction = call_direction.value
        if call_direction is not None and call_direction not in _CALL_DIRECTIONS:
            raise ValueError(f"call_direction must be one of {sorted(_CALL_DIRECTIONS)}")
        if call_duration_seconds is not None and call_duration_seconds < 0:
            raise ValueError("call_duration_seconds cannot be negative")

        owner = await self.db.execute(
            select(ContactDB.id).where(
                ContactDB.id == contact_id,
                ContactDB.agency_id == agency_id
            )
        )
        if owner.scalar_one_or_none() is None:
            raise ValueError(f"Contact {contact_id} not found for agency {agency_id}")

        activity = ActivityDB(
            agency_id=agency_id,
            contact_id=contact_id,
            source_module=module,
            activity_type=activity_type,
            activity_subtype=clean_text(activity_subtype),
            source_record_id=clean_text(source_record_id),
            phone=normalize_phone(phone),
            call_direction=call_direction,
            call_duration_seconds=call_duration_seconds,
            outcome=clean_text(outcome),
            notes=notes,
            created_by_display_name=clean_text(created_by_display_name),
        )
        self.db.add(activity)

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

        logger.info(
            f"Activity logged: {module}.{activity_type}",
            extra={"agency_id": str(agency_id), "contact_id": str(contact_id), "activity_id": str(activity.id)}
        )
        return activity

    async def list_timeline(
        self,
        agency_id: Union[uuid.UUID, str],
        contact_id: Optional[Union[uuid.UUID, str]] = None,
        phone: Optional[str] = None,
        limit: int = 100
    ) -> List[ActivityDB]:
        """Timeline entries, newest first, by contact and/or canonical phone."""
        query = select(ActivityDB).where(ActivityDB.agency_id == coerce_uuid(agency_id, "agency_id"))

        if contact_id is not None:
            query = query.where(ActivityDB.contact_id == coerce_uuid(contact_id, "contact_id"))

        if phone is not None:
            canonical = normalize_phone(phone)
            if canonical is None:
                return []
            query = query.where(ActivityDB.phone == canonical)

        limit = max(1, min(limit, MAX_TIMELINE_LIMIT))
        result = await self.db.execute(
            query.order_by(ActivityDB.created_at.desc(), ActivityDB.id.desc()).limit(limit)
        )
        return list(result.scalars().all())
