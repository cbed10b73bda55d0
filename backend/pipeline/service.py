"""
Pipeline Service

Records lead, quote and sale events from the intake module. Each event
resolves the customer to a contact first, then updates the pipeline
household. Sale recording runs the sale matcher synchronously.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import date
from typing import Dict, Any, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.pipeline_models import (
    LeadSourceDB, HouseholdDB, QuoteDB, SaleDB, SalePolicyDB
)
from identity.activity import ActivityLogger
from identity.models import ContactDB
from identity.normalization import (
    generate_household_key, normalize_phone, normalize_email, clean_text, coerce_uuid
)
from identity.service import ContactResolver
from models.enums import (
    AttentionReason, HouseholdStatus, ResolutionMatchType, SaleMatchStatus, SourceModule
)
from reconciliation.matching_rules.sale_rules import MatchResult
from reconciliation.services.sale_link_service import SaleLinkService, LinkResult

logger = logging.getLogger(__name__)

IdLike = Union[uuid.UUID, str]


@dataclass
class SalePolicyInput:
    """A policy line as submitted with a sale."""
    product_type: str
    premium_cents: int
    policy_number: Optional[str] = None
    items_count: int = 1


@dataclass
class LeadIntakeResult:
    household: HouseholdDB
    contact: ContactDB
    household_created: bool
    source_conflict: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "household": self.household.to_dict(),
            "contact_id": str(self.contact.id),
            "household_created": self.household_created,
            "source_conflict": self.source_conflict,
        }


@dataclass
class SaleRecordResult:
    sale: SaleDB
    contact: ContactDB
    match: Optional[MatchResult]
    link: Optional[LinkResult]
    household_created: bool = False
    action: str = "matched"
    match_type: Optional[ResolutionMatchType] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sale": self.sale.to_dict(),
            "contact_id": str(self.contact.id) if self.contact else None,
            "match": self.match.to_dict() if self.match else None,
            "link": self.link.to_dict() if self.link else None,
            "household_created": self.household_created,
            "action": self.action,
            "match_type": self.match_type.value if self.match_type else None,
        }


class PipelineService:
    """
    Lead -> quote -> sale intake.

    All writes for one event happen in a single transaction that is
    committed at the end of each public method.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.resolver = ContactResolver(db)
        self.linker = SaleLinkService(db)
        self.activity = ActivityLogger(db)

    # ==================== LEADS ====================

    async def record_lead(
        self,
        agency_id: IdLike,
        last_name: Optional[str],
        first_name: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        lead_source_id: Optional[IdLike] = None,
        team_member_id: Optional[IdLike] = None
    ) -> LeadIntakeResult:
        """
        Record an incoming lead.

        A lead for a customer who already has an open household reuses it,
        unless the lead comes from a different source. In that case a second
        household is created, flagged source_conflict, and pointing at the
        first household's source. Conflicts are left for a reviewer.

        Raises:
            ValueError: Missing agency/last name, or an unknown lead source
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        source_id = coerce_uuid(lead_source_id, "lead_source_id") if lead_source_id else None
        member_id = coerce_uuid(team_member_id, "team_member_id") if team_member_id else None
        household_key = generate_household_key(first_name, last_name, zip_code)

        if source_id is not None:
            await self._require_lead_source(agency_id, source_id)

        resolution = await self.resolver.resolve_contact(
            agency_id=agency_id,
            last_name=last_name,
            first_name=first_name,
            zip_code=zip_code,
            phone=phone,
            email=email,
            commit=False
        )
        contact = resolution.contact

        households = await self._open_households(agency_id, contact.id)
        primary = households[0] if households else None

        household_created = False
        source_conflict = False

        if primary is None:
            household = self._new_household(
                agency_id, household_key, contact.id, source_id, member_id,
                first_name=first_name, last_name=last_name, zip_code=zip_code,
                phone=phone, email=email
            )
            if source_id is None:
                household.flag(AttentionReason.MISSING_LEAD_SOURCE.value)
            self.db.add(household)
            household_created = True

        elif source_id is None or primary.lead_source_id in (None, source_id):
            household = primary
            if household.lead_source_id is None and source_id is not None:
                household.lead_source_id = source_id
                if household.attention_reason == AttentionReason.MISSING_LEAD_SOURCE.value:
                    household.clear_attention()
            if household.team_member_id is None and member_id is not None:
                household.team_member_id = member_id

        else:
            source_conflict = True
            household = next(
                (h for h in households[1:] if h.lead_source_id == source_id),
                None
            )
            if household is None:
                household = self._new_household(
                    agency_id, household_key, contact.id, source_id, member_id,
                    first_name=first_name, last_name=last_name, zip_code=zip_code,
                    phone=phone, email=email
                )
                household.flag(AttentionReason.SOURCE_CONFLICT.value)
                household.conflicting_lead_source_id = primary.lead_source_id
                self.db.add(household)
                household_created = True
                logger.warning(
                    f"Lead source conflict on household {primary.id}",
                    extra={"agency_id": str(agency_id), "contact_id": str(contact.id)}
                )

        await self.db.flush()

        if household_created:
            await self.activity.log_activity(
                contact_id=contact.id,
                agency_id=agency_id,
                source_module=SourceModule.LQS,
                activity_type="lead_received",
                activity_subtype="source_conflict" if source_conflict else None,
                phone=phone,
                source_record_id=str(household.id),
                commit=False
            )

        await self.db.commit()
        return LeadIntakeResult(
            household=household,
            contact=contact,
            household_created=household_created,
            source_conflict=source_conflict,
        )

    # ==================== QUOTES ====================

    async def record_quote(
        self,
        agency_id: IdLike,
        household_id: IdLike,
        product_type: str,
        premium_cents: int,
        quote_date: Optional[date] = None,
        team_member_id: Optional[IdLike] = None,
        items_quoted: int = 1
    ) -> QuoteDB:
        """
        Add a quote line. Promotes an open household to quoted; a sold
        household stays sold.
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        household_id = coerce_uuid(household_id, "household_id")
        member_id = coerce_uuid(team_member_id, "team_member_id") if team_member_id else None

        product_type = clean_text(product_type)
        if not product_type:
            raise ValueError("product_type is required")
        if premium_cents is None or premium_cents < 0:
            raise ValueError("premium_cents must be zero or positive")

        household = await self.linker.get_household(agency_id, household_id)
        if household is None:
            raise ValueError(f"Household {household_id} not found for agency {agency_id}")

        quote_date = quote_date or date.today()
        quote = QuoteDB(
            agency_id=agency_id,
            product_type=product_type,
            premium_cents=premium_cents,
            items_quoted=items_quoted,
            quote_date=quote_date,
            team_member_id=member_id,
        )
        household.quotes.append(quote)

        if household.status == HouseholdStatus.OPEN.value:
            household.status = HouseholdStatus.QUOTED.value
        if household.first_quote_date is None or quote_date < household.first_quote_date:
            household.first_quote_date = quote_date
        if household.team_member_id is None and member_id is not None:
            household.team_member_id = member_id

        await self.db.flush()

        if household.contact_id is not None:
            await self.activity.log_activity(
                contact_id=household.contact_id,
                agency_id=agency_id,
                source_module=SourceModule.LQS,
                activity_type="quoted",
                activity_subtype=product_type,
                source_record_id=str(quote.id),
                commit=False
            )

        await self.db.commit()
        return quote

    # ==================== SALES ====================

    async def record_sale(
        self,
        agency_id: IdLike,
        last_name: Optional[str],
        sale_date: Optional[date],
        policies: List[SalePolicyInput],
        first_name: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        street_address: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        team_member_id: Optional[IdLike] = None,
        lead_source_id: Optional[IdLike] = None
    ) -> SaleRecordResult:
        """
        Record a sale with its policy lines and match it once.

        If no household is a candidate, one is created from the sale and
        linked; it stays flagged missing_lead_source when the sale carries
        no lead source.
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        if sale_date is None:
            raise ValueError("sale_date is required")
        if not policies:
            raise ValueError("At least one policy line is required")
        for policy in policies:
            self._validate_policy(policy)

        source_id = coerce_uuid(lead_source_id, "lead_source_id") if lead_source_id else None
        member_id = coerce_uuid(team_member_id, "team_member_id") if team_member_id else None
        if source_id is not None:
            await self._require_lead_source(agency_id, source_id)

        resolution = await self.resolver.resolve_contact(
            agency_id=agency_id,
            last_name=last_name,
            first_name=first_name,
            zip_code=zip_code,
            phone=phone,
            email=email,
            street_address=street_address,
            city=city,
            state=state,
            commit=False
        )

        sale = SaleDB(
            agency_id=agency_id,
            first_name=clean_text(first_name),
            last_name=clean_text(last_name),
            zip_code=clean_text(zip_code),
            phone=normalize_phone(phone),
            email=normalize_email(email),
            street_address=clean_text(street_address),
            city=clean_text(city),
            state=clean_text(state),
            sale_date=sale_date,
            team_member_id=member_id,
            lead_source_id=source_id,
            contact_id=resolution.contact.id,
            match_status=SaleMatchStatus.PENDING.value,
        )
        for policy in policies:
            sale.policies.append(self._policy_row(policy))
        self.db.add(sale)
        await self.db.flush()

        result = await self._match_new_sale(sale)
        result.contact = resolution.contact
        result.match_type = resolution.match_type

        await self.db.commit()
        logger.info(
            f"Sale recorded: {sale.id} ({result.action})",
            extra={"agency_id": str(agency_id), "match_status": sale.match_status}
        )
        return result

    async def add_sale_policy(
        self,
        agency_id: IdLike,
        sale_id: IdLike,
        policy: SalePolicyInput
    ) -> SaleRecordResult:
        """
        Add a policy line to an existing sale.

        The sale's match status decides what happens next:
        - linked: only the new line is linked to the sale's household
        - needs_review: left for the reviewer, no re-match
        - pending / no_match: matched as a new sale
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        sale_id = coerce_uuid(sale_id, "sale_id")
        self._validate_policy(policy)

        sale = await self.linker.get_sale(agency_id, sale_id)
        if sale is None:
            raise ValueError(f"Sale {sale_id} not found for agency {agency_id}")

        sale.policies.append(self._policy_row(policy))
        await self.db.flush()

        contact = None
        if sale.contact_id is not None:
            contact = await self.resolver.get_contact(agency_id, sale.contact_id)

        if sale.match_status == SaleMatchStatus.LINKED.value and sale.household_id is not None:
            link = await self.linker.link_sale_to_household(
                agency_id, sale.household_id, sale.id, commit=False
            )
            result = SaleRecordResult(
                sale=sale, contact=contact, match=None, link=link, action="linked_to_existing"
            )
        elif sale.match_status == SaleMatchStatus.NEEDS_REVIEW.value:
            result = SaleRecordResult(
                sale=sale, contact=contact, match=None, link=None, action="awaiting_review"
            )
        else:
            result = await self._match_new_sale(sale)
            result.contact = contact

        await self.db.commit()
        return result

    # ==================== HELPERS ====================

    async def _match_new_sale(self, sale: SaleDB) -> SaleRecordResult:
        match = await self.linker.evaluate_sale(sale)

        if match.best_match is None:
            household = self._new_household(
                sale.agency_id,
                generate_household_key(sale.first_name, sale.last_name, sale.zip_code),
                sale.contact_id,
                sale.lead_source_id,
                sale.team_member_id,
                first_name=sale.first_name,
                last_name=sale.last_name,
                zip_code=sale.zip_code,
                phone=sale.phone,
                email=sale.email,
            )
            self.db.add(household)
            await self.db.flush()

            link = await self.linker.link_sale_to_household(
                sale.agency_id, household.id, sale.id, commit=False
            )
            if household.lead_source_id is None:
                household.flag(AttentionReason.MISSING_LEAD_SOURCE.value)
                await self.db.flush()
            return SaleRecordResult(
                sale=sale, contact=None, match=match, link=link,
                household_created=True, action="household_created"
            )

        link = await self.linker.apply_match(sale, match)
        action = "linked" if link is not None else "flagged_for_review"
        return SaleRecordResult(sale=sale, contact=None, match=match, link=link, action=action)

    async def _open_households(self, agency_id: uuid.UUID, contact_id: uuid.UUID) -> List[HouseholdDB]:
        result = await self.db.execute(
            select(HouseholdDB)
            .where(
                HouseholdDB.agency_id == agency_id,
                HouseholdDB.contact_id == contact_id,
                HouseholdDB.status != HouseholdStatus.SOLD.value
            )
            .order_by(HouseholdDB.created_at, HouseholdDB.id)
        )
        return list(result.scalars().all())

    async def _require_lead_source(self, agency_id: uuid.UUID, lead_source_id: uuid.UUID):
        result = await self.db.execute(
            select(LeadSourceDB.id).where(
                LeadSourceDB.id == lead_source_id,
                LeadSourceDB.agency_id == agency_id
            )
        )
        if result.scalar_one_or_none() is None:
            raise ValueError(f"Lead source {lead_source_id} not found for agency {agency_id}")

    @staticmethod
    def _new_household(
        agency_id, household_key, contact_id, lead_source_id, team_member_id,
        first_name=None, last_name=None, zip_code=None, phone=None, email=None
    ) -> HouseholdDB:
        return HouseholdDB(
            agency_id=agency_id,
            household_key=household_key,
            first_name=clean_text(first_name),
            last_name=clean_text(last_name),
            zip_code=clean_text(zip_code),
            phone=normalize_phone(phone),
            email=normalize_email(email),
            contact_id=contact_id,
            lead_source_id=lead_source_id,
            team_member_id=team_member_id,
            status=HouseholdStatus.OPEN.value,
            needs_attention=False,
            quotes=[],
        )

    @staticmethod
    def _validate_policy(policy: SalePolicyInput):
        if not clean_text(policy.product_type):
            raise ValueError("product_type is required on every policy line")
        if policy.premium_cents is None or policy.premium_cents < 0:
            raise ValueError("premium_cents must be zero or positive")
        if policy.items_count is None or policy.items_count < 1:
            raise ValueError("items_count must be at least 1")

    @staticmethod
    def _policy_row(policy: SalePolicyInput) -> SalePolicyDB:
        return SalePolicyDB(
            product_type=clean_text(policy.product_type),
            premium_cents=policy.premium_cents,
            policy_number=clean_text(policy.policy_number),
            items_count=policy.items_count,
        )


async def create_lead_source(db: AsyncSession, agency_id: IdLike, name: str) -> LeadSourceDB:
    """Create an agency lead source."""
    name = clean_text(name)
    if not name:
        raise ValueError("Lead source name is required")
    source = LeadSourceDB(agency_id=coerce_uuid(agency_id, "agency_id"), name=name)
    db.add(source)
    await db.commit()
    return source
