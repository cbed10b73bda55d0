"""
Sale Link Service

Closes the loop between a recorded sale and the pipeline household that
produced it:
- Match: pure read, scores candidate households
- Link: writes linked-sale rows and marks the household sold
- Apply: link when auto-linkable, otherwise flag for human review
- Backfill: re-runs matching for every unmatched sale in an agency
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Union

from sqlalchemy import select, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from database.pipeline_models import HouseholdDB, SaleDB, LinkedSaleDB
from identity.activity import ActivityLogger
from identity.normalization import generate_household_key, coerce_uuid
from logging_config import scrub_pii
from models.enums import (
    AttentionReason,
    ConfidenceLabel,
    HouseholdStatus,
    SaleMatchStatus,
    SourceModule,
)
from reconciliation.matching_rules.sale_rules import SaleMatchingRules, MatchResult
from sentry_integration import capture_exception

logger = logging.getLogger(__name__)


class SaleLinkEvent:
    """Event names for sale linkage operations."""
    MATCH_EVALUATED = "sale_link.match_evaluated"
    LINKED = "sale_link.linked"
    DUPLICATE_REJECTED = "sale_link.duplicate_rejected"
    FLAGGED = "sale_link.flagged_for_review"
    NO_MATCH = "sale_link.no_match"
    BACKFILL_COMPLETED = "sale_link.backfill_completed"


def log_sale_link_event(
    event_type: str,
    agency_id: Union[uuid.UUID, str],
    details: Optional[Dict[str, Any]] = None,
    sale_id: Optional[Union[uuid.UUID, str]] = None,
    actor: str = "system"
):
    """Log sale linkage event for audit trail."""
    log_entry = {
        "event": event_type,
        "agency_id": str(agency_id),
        "sale_id": str(sale_id) if sale_id else None,
        "details": scrub_pii(details),
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Sale link event: {event_type}", extra=log_entry)


@dataclass
class LinkResult:
    """Result of linking one sale to one household."""
    household_id: uuid.UUID
    sale_id: uuid.UUID
    created: int = 0
    already_linked: int = 0
    rejected_duplicates: int = 0
    linked_sale_ids: List[uuid.UUID] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "household_id": str(self.household_id),
            "sale_id": str(self.sale_id),
            "created": self.created,
            "already_linked": self.already_linked,
            "rejected_duplicates": self.rejected_duplicates,
            "linked_sale_ids": [str(i) for i in self.linked_sale_ids],
        }


@dataclass
class SalesBackfillResult:
    """Aggregate result of a sale-matching backfill."""
    agency_id: uuid.UUID
    scanned: int = 0
    linked: int = 0
    needs_review: int = 0
    no_match: int = 0
    errors: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agency_id": str(self.agency_id),
            "scanned": self.scanned,
            "linked": self.linked,
            "needs_review": self.needs_review,
            "no_match": self.no_match,
            "errors": self.errors,
            "results": self.results,
        }


class SaleLinkService:
    """
    Matches sales to pipeline households and records the linkage.

    Every call takes the agency id explicitly; a sale or household from
    another agency is rejected.
    """

    def __init__(self, db: AsyncSession, rules: Optional[SaleMatchingRules] = None):
        self.db = db
        self.rules = rules or SaleMatchingRules()

    # ==================== LOOKUPS ====================

    async def get_sale(self, agency_id: uuid.UUID, sale_id: uuid.UUID) -> Optional[SaleDB]:
        result = await self.db.execute(
            select(SaleDB).where(SaleDB.id == sale_id, SaleDB.agency_id == agency_id)
        )
        return result.scalar_one_or_none()

    async def get_household(self, agency_id: uuid.UUID, household_id: uuid.UUID) -> Optional[HouseholdDB]:
        result = await self.db.execute(
            select(HouseholdDB).where(HouseholdDB.id == household_id, HouseholdDB.agency_id == agency_id)
        )
        return result.scalar_one_or_none()

    async def find_candidates(self, sale: SaleDB) -> List[HouseholdDB]:
        """
        Open households for the sale's contact, plus unlinked households
        carrying the sale's household key. Oldest first.
        """
        conditions = []
        if sale.contact_id is not None:
            conditions.append(HouseholdDB.contact_id == sale.contact_id)

        try:
            household_key = generate_household_key(sale.first_name, sale.last_name, sale.zip_code)
        except ValueError:
            household_key = None
        if household_key:
            conditions.append(and_(
                HouseholdDB.contact_id.is_(None),
                HouseholdDB.household_key == household_key
            ))

        if not conditions:
            return []

        result = await self.db.execute(
            select(HouseholdDB)
            .where(
                HouseholdDB.agency_id == sale.agency_id,
                HouseholdDB.status != HouseholdStatus.SOLD.value,
                or_(*conditions)
            )
            .order_by(HouseholdDB.created_at, HouseholdDB.id)
        )
        return list(result.scalars().all())

    # ==================== MATCH ====================

    async def match_sale_to_household(
        self,
        agency_id: Union[uuid.UUID, str],
        sale_id: Union[uuid.UUID, str]
    ) -> MatchResult:
        """
        Score candidate households for a sale. Read-only.

        Raises:
            ValueError: If the sale does not exist in the agency
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        sale_id = coerce_uuid(sale_id, "sale_id")

        sale = await self.get_sale(agency_id, sale_id)
        if sale is None:
            raise ValueError(f"Sale {sale_id} not found for agency {agency_id}")

        return await self.evaluate_sale(sale)

    async def evaluate_sale(self, sale: SaleDB) -> MatchResult:
        candidates = await self.find_candidates(sale)
        result = self.rules.evaluate(sale, candidates)

        log_sale_link_event(
            SaleLinkEvent.MATCH_EVALUATED,
            sale.agency_id,
            {
                "candidates": len(result.candidates),
                "confidence": result.confidence.value if result.confidence else None,
                "attention_reason": result.attention_reason.value if result.attention_reason else None,
                "rules_version": result.rules_version,
            },
            sale_id=sale.id
        )
        return result

    # ==================== LINK ====================

    async def link_sale_to_household(
        self,
        agency_id: Union[uuid.UUID, str],
        household_id: Union[uuid.UUID, str],
        sale_id: Union[uuid.UUID, str],
        confidence: Optional[ConfidenceLabel] = None,
        commit: bool = True
    ) -> LinkResult:
        """
        Link every policy line of a sale to a household.

        Lines already linked are skipped. A write that still collides with
        the linked-sale identity constraint is rejected and counted.

        Raises:
            ValueError: Unknown sale/household, cross-agency ids, or a sale
                without policy lines
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        household_id = coerce_uuid(household_id, "household_id")
        sale_id = coerce_uuid(sale_id, "sale_id")

        household = await self.get_household(agency_id, household_id)
        if household is None:
            raise ValueError(f"Household {household_id} not found for agency {agency_id}")

        sale = await self.get_sale(agency_id, sale_id)
        if sale is None:
            raise ValueError(f"Sale {sale_id} not found for agency {agency_id}")

        if sale.household_id is not None and sale.household_id != household.id:
            raise ValueError(f"Sale {sale_id} is already linked to another household")

        result = await self._link(household, sale, confidence)

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()
        return result

    async def _link(
        self,
        household: HouseholdDB,
        sale: SaleDB,
        confidence: Optional[ConfidenceLabel] = None
    ) -> LinkResult:
        if not sale.policies:
            raise ValueError(f"Sale {sale.id} has no policy lines to link")

        result = LinkResult(household_id=household.id, sale_id=sale.id)

        for policy in sale.policies:
            policy_number = policy.policy_number or ""
            existing = await self.db.execute(
                select(LinkedSaleDB.id).where(
                    LinkedSaleDB.household_id == household.id,
                    LinkedSaleDB.sale_date == sale.sale_date,
                    LinkedSaleDB.product_type == policy.product_type,
                    LinkedSaleDB.premium_cents == policy.premium_cents,
                    LinkedSaleDB.policy_number == policy_number
                )
            )
            if existing.first() is not None:
                result.already_linked += 1
                continue

            linked = LinkedSaleDB(
                agency_id=sale.agency_id,
                household_id=household.id,
                sale_id=sale.id,
                sale_policy_id=policy.id,
                sale_date=sale.sale_date,
                product_type=policy.product_type,
                premium_cents=policy.premium_cents,
                policy_number=policy_number,
                items_sold=policy.items_count,
                team_member_id=sale.team_member_id,
                match_confidence=confidence.value if confidence else None,
                match_rules_version=self.rules.version,
            )
            try:
                async with self.db.begin_nested():
                    self.db.add(linked)
            except IntegrityError:
                result.rejected_duplicates += 1
                log_sale_link_event(
                    SaleLinkEvent.DUPLICATE_REJECTED,
                    sale.agency_id,
                    {"household_id": str(household.id), "product_type": policy.product_type},
                    sale_id=sale.id
                )
                logger.warning(
                    f"Rejected duplicate linked sale for household {household.id}",
                    extra={"agency_id": str(sale.agency_id), "sale_id": str(sale.id)}
                )
                continue

            result.created += 1
            result.linked_sale_ids.append(linked.id)

        household.status = HouseholdStatus.SOLD.value
        if household.sold_date is None:
            household.sold_date = sale.sale_date
        household.clear_attention()
        if household.team_member_id is None and sale.team_member_id is not None:
            household.team_member_id = sale.team_member_id
        if household.lead_source_id is None and sale.lead_source_id is not None:
            household.lead_source_id = sale.lead_source_id

        sale.household_id = household.id
        sale.match_status = SaleMatchStatus.LINKED.value
        if sale.contact_id is None and household.contact_id is not None:
            sale.contact_id = household.contact_id

        await self.db.flush()

        if result.created and household.contact_id is not None:
            await ActivityLogger(self.db).log_activity(
                contact_id=household.contact_id,
                agency_id=sale.agency_id,
                source_module=SourceModule.LQS,
                activity_type="policy_sold",
                source_record_id=str(sale.id),
                notes=f"{result.created} policy line(s) linked",
                commit=False
            )

        log_sale_link_event(SaleLinkEvent.LINKED, sale.agency_id, result.to_dict(), sale_id=sale.id)
        return result

    # ==================== APPLY ====================

    async def apply_match(self, sale: SaleDB, match: MatchResult) -> Optional[LinkResult]:
        """
        Act on a match result: link when auto-linkable, otherwise flag the
        best (and tied) households for review. Does not commit.
        """
        if match.best_match is None:
            sale.match_status = SaleMatchStatus.NO_MATCH.value
            await self.db.flush()
            log_sale_link_event(SaleLinkEvent.NO_MATCH, sale.agency_id, sale_id=sale.id)
            return None

        if match.auto_linkable:
            household = await self.get_household(sale.agency_id, match.best_match.household_id)
            return await self._link(household, sale, match.confidence)

        await self._flag_for_review(sale, match)
        return None

    async def _flag_for_review(self, sale: SaleDB, match: MatchResult):
        reason = match.attention_reason or AttentionReason.MANUAL_REVIEW
        flagged_ids = match.tied_household_ids or [match.best_match.household_id]

        conflicting_source = next(
            (c.lead_source_id for c in match.candidates if c.in_source_conflict and c.lead_source_id),
            None
        )

        for household_id in flagged_ids:
            household = await self.get_household(sale.agency_id, household_id)
            if household is None:
                continue
            if household.attention_reason != AttentionReason.SOURCE_CONFLICT.value:
                household.flag(reason.value)
            if (
                reason == AttentionReason.SOURCE_CONFLICT
                and household.conflicting_lead_source_id is None
                and conflicting_source is not None
                and conflicting_source != household.lead_source_id
            ):
                household.conflicting_lead_source_id = conflicting_source

        sale.match_status = SaleMatchStatus.NEEDS_REVIEW.value
        await self.db.flush()

        log_sale_link_event(
            SaleLinkEvent.FLAGGED,
            sale.agency_id,
            {"reason": reason.value, "households": [str(h) for h in flagged_ids]},
            sale_id=sale.id
        )

    # ==================== BACKFILL ====================

    async def backfill_sales_matching(self, agency_id: Union[uuid.UUID, str]) -> SalesBackfillResult:
        """
        Re-run matching for every sale in the agency that has no household.

        Each sale runs in its own savepoint; one failing sale is reported
        and the scan continues. Safe to re-run: linked sales are skipped
        and linkage rows are protected by the identity constraint.
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        summary = SalesBackfillResult(agency_id=agency_id)

        id_rows = await self.db.execute(
            select(SaleDB.id)
            .where(SaleDB.agency_id == agency_id, SaleDB.household_id.is_(None))
            .order_by(SaleDB.created_at, SaleDB.id)
        )
        sale_ids = [row[0] for row in id_rows.all()]

        for sale_id in sale_ids:
            summary.scanned += 1
            entry: Dict[str, Any] = {"sale_id": str(sale_id)}
            try:
                async with self.db.begin_nested():
                    sale = await self.get_sale(agency_id, sale_id)
                    match = await self.evaluate_sale(sale)
                    link = await self.apply_match(sale, match)
                    entry["status"] = sale.match_status
                    if link is not None:
                        entry["household_id"] = str(link.household_id)
                    if match.confidence is not None:
                        entry["confidence"] = match.confidence.value
            except Exception as e:
                logger.error(
                    f"Sale matching failed for sale {sale_id}: {type(e).__name__}",
                    extra={"agency_id": str(agency_id)}
                )
                capture_exception(e, agency_id=str(agency_id), sale_id=str(sale_id))
                summary.errors += 1
                entry["status"] = "error"
                entry["error"] = type(e).__name__
                summary.results.append(entry)
                continue

            if entry["status"] == SaleMatchStatus.LINKED.value:
                summary.linked += 1
            elif entry["status"] == SaleMatchStatus.NEEDS_REVIEW.value:
                summary.needs_review += 1
            else:
                summary.no_match += 1
            summary.results.append(entry)

        await self.db.commit()

        log_sale_link_event(
            SaleLinkEvent.BACKFILL_COMPLETED,
            agency_id,
            {k: v for k, v in summary.to_dict().items() if k != "results"}
        )
        return summary
