"""
Contact Profile

One read that gathers everything linked to a contact through contact_id:
- Pipeline households with their quotes and linked sales
- Cancel audit, renewal and winback rows
- The activity timeline
- The contact's lifecycle stage

The stage is derived, never stored. It follows a fixed priority so every
caller places a contact in the same stage:
    winback > cancel_audit > customer > renewal > quoted > open_lead
"""

import uuid
import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backfill.sources import SOURCE_TABLES
from database.pipeline_models import HouseholdDB, LinkedSaleDB
from database.source_models import CancelAuditRecordDB, RenewalRecordDB, WinbackHouseholdDB
from models.enums import HouseholdStatus, LifecycleStage

from .activity import ActivityLogger
from .models import ContactDB, ActivityDB
from .normalization import coerce_uuid
from .service import ContactResolver

logger = logging.getLogger(__name__)

WINBACK_ACTIVE_STATUSES = frozenset({"untouched", "in_progress"})
WINBACK_MOVED_TO_QUOTED = "moved_to_quoted"
CANCEL_SAVED_STATUS = "saved"
RENEWAL_SUCCESS_STATUS = "success"
RENEWAL_ACTIVE_STATUSES = frozenset({"uncontacted", "pending"})

PROFILE_ACTIVITY_LIMIT = 100


def _status(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def determine_lifecycle_stage(
    households: List[HouseholdDB],
    linked_sales: List[LinkedSaleDB],
    cancel_audits: List[CancelAuditRecordDB],
    renewals: List[RenewalRecordDB],
    winbacks: List[WinbackHouseholdDB],
) -> LifecycleStage:
    """
    Place a contact in exactly one lifecycle stage.

    A cancel audit row with no status counts as unresolved. Statuses are
    compared case-insensitively.
    """
    if any(_status(w.status) in WINBACK_ACTIVE_STATUSES for w in winbacks):
        return LifecycleStage.WINBACK

    if any(_status(c.cancel_status) != CANCEL_SAVED_STATUS for c in cancel_audits):
        return LifecycleStage.CANCEL_AUDIT

    if (
        linked_sales
        or any(_status(r.current_status) == RENEWAL_SUCCESS_STATUS for r in renewals)
        or any(_status(c.cancel_status) == CANCEL_SAVED_STATUS for c in cancel_audits)
    ):
        return LifecycleStage.CUSTOMER

    if any(_status(r.current_status) in RENEWAL_ACTIVE_STATUSES for r in renewals):
        return LifecycleStage.RENEWAL

    if (
        any(h.quotes or h.status == HouseholdStatus.QUOTED.value for h in households)
        or any(_status(w.status) == WINBACK_MOVED_TO_QUOTED for w in winbacks)
    ):
        return LifecycleStage.QUOTED

    return LifecycleStage.OPEN_LEAD


@dataclass
class ContactProfile:
    contact: ContactDB
    lifecycle_stage: LifecycleStage
    households: List[HouseholdDB] = field(default_factory=list)
    linked_sales: List[LinkedSaleDB] = field(default_factory=list)
    cancel_audit_records: List[CancelAuditRecordDB] = field(default_factory=list)
    renewal_records: List[RenewalRecordDB] = field(default_factory=list)
    winback_records: List[WinbackHouseholdDB] = field(default_factory=list)
    activities: List[ActivityDB] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        sales_by_household: Dict[uuid.UUID, List[Dict[str, Any]]] = {}
        for sale in self.linked_sales:
            sales_by_household.setdefault(sale.household_id, []).append(sale.to_dict())

        return {
            "contact": self.contact.to_dict(),
            "lifecycle_stage": self.lifecycle_stage.value,
            "households": [
                {**h.to_dict(), "sales": sales_by_household.get(h.id, [])}
                for h in self.households
            ],
            "cancel_audit_records": [r.to_dict() for r in self.cancel_audit_records],
            "renewal_records": [r.to_dict() for r in self.renewal_records],
            "winback_records": [r.to_dict() for r in self.winback_records],
            "activities": [a.to_dict() for a in self.activities],
        }


class ContactProfileService:
    """Assembles a contact profile from every module linked to the contact."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.resolver = ContactResolver(db)
        self.activity = ActivityLogger(db)

    async def get_profile(
        self,
        agency_id: Union[uuid.UUID, str],
        contact_id: Union[uuid.UUID, str],
        activity_limit: int = PROFILE_ACTIVITY_LIMIT
    ) -> Optional[ContactProfile]:
        """
        Load a contact and everything linked to it.

        Returns None when the contact does not belong to the agency. Only
        rows in the same agency are ever included.
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        contact_id = coerce_uuid(contact_id, "contact_id")

        contact = await self.resolver.get_contact(agency_id, contact_id)
        if contact is None:
            return None

        module_rows = {}
        for name, table in SOURCE_TABLES.items():
            model = table.model
            result = await self.db.execute(
                select(model)
                .where(model.agency_id == agency_id, model.contact_id == contact_id)
                .order_by(model.created_at.desc(), model.id)
            )
            module_rows[name] = list(result.scalars().all())

        households = module_rows["lqs_households"]
        linked_sales: List[LinkedSaleDB] = []
        if households:
            result = await self.db.execute(
                select(LinkedSaleDB)
                .where(
                    LinkedSaleDB.agency_id == agency_id,
                    LinkedSaleDB.household_id.in_([h.id for h in households])
                )
                .order_by(LinkedSaleDB.sale_date.desc(), LinkedSaleDB.id)
            )
            linked_sales = list(result.scalars().all())

        activities = await self.activity.list_timeline(
            agency_id, contact_id=contact_id, limit=activity_limit
        )

        stage = determine_lifecycle_stage(
            households,
            linked_sales,
            module_rows["cancel_audit_records"],
            module_rows["renewal_records"],
            module_rows["winback_households"],
        )

        logger.info(
            f"Contact profile loaded: {stage.value}",
            extra={"agency_id": str(agency_id), "contact_id": str(contact_id)}
        )

        return ContactProfile(
            contact=contact,
            lifecycle_stage=stage,
            households=households,
            linked_sales=linked_sales,
            cancel_audit_records=module_rows["cancel_audit_records"],
            renewal_records=module_rows["renewal_records"],
            winback_records=module_rows["winback_households"],
            activities=activities,
        )
