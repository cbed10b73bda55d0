"""
Unit Tests for the Sale Link Service

Tests sale -> household linkage against a real (SQLite) database:
- Linking is idempotent and guarded by the identity constraint
- Cross-agency and already-linked sales are rejected
- Match is read-only
- Bulk matching of unmatched sales

Run with: pytest tests/test_sale_link_service.py -v
"""

import uuid
from datetime import date

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from database.pipeline_models import HouseholdDB, QuoteDB, SaleDB, SalePolicyDB, LinkedSaleDB
from identity.models import ActivityDB
from identity.normalization import generate_household_key
from identity.service import ContactResolver
from models.enums import AttentionReason, ConfidenceLabel, SaleMatchStatus
from reconciliation.matching_rules.sale_rules import SaleMatchingRules
from reconciliation.services.sale_link_service import SaleLinkService

SALE_DATE = date(2024, 3, 1)


def make_household(agency_id, contact_id=None, last_name="Smith", first_name="John",
                   zip_code="30301", quotes=None, **kwargs):
    return HouseholdDB(
        agency_id=agency_id,
        household_key=generate_household_key(first_name, last_name, zip_code),
        first_name=first_name,
        last_name=last_name,
        zip_code=zip_code,
        contact_id=contact_id,
        status="quoted" if quotes else "open",
        quotes=quotes or [],
        **kwargs
    )


def make_quote(agency_id, product="auto", premium=50000):
    return QuoteDB(
        agency_id=agency_id,
        product_type=product,
        premium_cents=premium,
        quote_date=date(2024, 2, 1),
    )


def make_sale(agency_id, contact_id=None, policies=None, last_name="Smith",
              first_name="John", zip_code="30301"):
    if policies is None:
        policies = [SalePolicyDB(product_type="auto", premium_cents=50000, policy_number="P-100")]
    return SaleDB(
        agency_id=agency_id,
        first_name=first_name,
        last_name=last_name,
        zip_code=zip_code,
        sale_date=SALE_DATE,
        contact_id=contact_id,
        policies=policies,
    )


async def count_linked(db):
    result = await db.execute(select(func.count()).select_from(LinkedSaleDB))
    return result.scalar_one()


@pytest.fixture
def service(db_session):
    rules = SaleMatchingRules(high_score=75, medium_score=50, premium_tolerance=0.10)
    return SaleLinkService(db_session, rules=rules)


class TestLinkSaleToHousehold:
    """link_sale_to_household"""

    @pytest.mark.asyncio
    async def test_link_creates_one_row_per_policy_line(self, service, db_session, agency_id):
        household = make_household(agency_id)
        sale = make_sale(agency_id, policies=[
            SalePolicyDB(product_type="auto", premium_cents=50000, policy_number="P-1"),
            SalePolicyDB(product_type="home", premium_cents=80000, policy_number="P-2"),
        ])
        db_session.add_all([household, sale])
        await db_session.commit()

        result = await service.link_sale_to_household(agency_id, household.id, sale.id)

        assert result.created == 2
        assert result.already_linked == 0
        assert await count_linked(db_session) == 2
        assert household.status == "sold"
        assert household.sold_date == SALE_DATE
        assert sale.household_id == household.id
        assert sale.match_status == SaleMatchStatus.LINKED.value

    @pytest.mark.asyncio
    async def test_link_is_idempotent(self, service, db_session, agency_id):
        household = make_household(agency_id)
        sale = make_sale(agency_id)
        db_session.add_all([household, sale])
        await db_session.commit()

        await service.link_sale_to_household(agency_id, household.id, sale.id)
        again = await service.link_sale_to_household(agency_id, household.id, sale.id)

        assert again.created == 0
        assert again.already_linked == 1
        assert await count_linked(db_session) == 1

    @pytest.mark.asyncio
    async def test_missing_policy_number_stored_as_empty(self, service, db_session, agency_id):
        household = make_household(agency_id)
        sale = make_sale(agency_id, policies=[
            SalePolicyDB(product_type="auto", premium_cents=50000, policy_number=None)
        ])
        db_session.add_all([household, sale])
        await db_session.commit()

        await service.link_sale_to_household(agency_id, household.id, sale.id)
        await service.link_sale_to_household(agency_id, household.id, sale.id)

        rows = (await db_session.execute(select(LinkedSaleDB))).scalars().all()
        assert len(rows) == 1
        assert rows[0].policy_number == ""

    @pytest.mark.asyncio
    async def test_linking_clears_attention_and_logs_activity(self, service, db_session, agency_id):
        contact = (await ContactResolver(db_session).resolve_contact(agency_id, "Smith", "John", "30301")).contact
        household = make_household(agency_id, contact_id=contact.id)
        household.flag(AttentionReason.MANUAL_REVIEW.value)
        sale = make_sale(agency_id)
        db_session.add_all([household, sale])
        await db_session.commit()

        await service.link_sale_to_household(agency_id, household.id, sale.id, confidence=ConfidenceLabel.HIGH)

        assert household.needs_attention is False
        assert household.attention_reason is None
        assert sale.contact_id == contact.id

        linked = (await db_session.execute(select(LinkedSaleDB))).scalar_one()
        assert linked.match_confidence == "high"
        assert linked.match_rules_version == "sale-rules-v1"

        activities = (await db_session.execute(select(ActivityDB))).scalars().all()
        assert [a.activity_type for a in activities] == ["policy_sold"]

    @pytest.mark.asyncio
    async def test_sale_linked_elsewhere_rejected(self, service, db_session, agency_id):
        first = make_household(agency_id)
        second = make_household(agency_id)
        sale = make_sale(agency_id)
        db_session.add_all([first, second, sale])
        await db_session.commit()

        await service.link_sale_to_household(agency_id, first.id, sale.id)

        with pytest.raises(ValueError, match="already linked"):
            await service.link_sale_to_household(agency_id, second.id, sale.id)

    @pytest.mark.asyncio
    async def test_cross_agency_household_rejected(self, service, db_session, agency_id, other_agency_id):
        household = make_household(other_agency_id)
        sale = make_sale(agency_id)
        db_session.add_all([household, sale])
        await db_session.commit()

        with pytest.raises(ValueError, match="not found"):
            await service.link_sale_to_household(agency_id, household.id, sale.id)

        assert await count_linked(db_session) == 0


class TestLinkedSaleConstraint:
    """The identity tuple is enforced by the database itself."""

    @pytest.mark.asyncio
    async def test_direct_duplicate_insert_fails(self, db_session, agency_id):
        household = make_household(agency_id)
        sale = make_sale(agency_id)
        db_session.add_all([household, sale])
        await db_session.commit()

        def row():
            return LinkedSaleDB(
                agency_id=agency_id,
                household_id=household.id,
                sale_id=sale.id,
                sale_date=SALE_DATE,
                product_type="auto",
                premium_cents=50000,
                policy_number="",
            )

        db_session.add(row())
        await db_session.commit()

        db_session.add(row())
        with pytest.raises(IntegrityError):
            await db_session.commit()
        await db_session.rollback()

        assert await count_linked(db_session) == 1


class TestMatchSale:
    """match_sale_to_household is read-only."""

    @pytest.mark.asyncio
    async def test_match_does_not_write(self, service, db_session, agency_id):
        household = make_household(agency_id, quotes=[make_quote(agency_id)])
        sale = make_sale(agency_id)
        db_session.add_all([household, sale])
        await db_session.commit()

        result = await service.match_sale_to_household(agency_id, sale.id)

        assert result.best_match.household_id == household.id
        assert result.confidence == ConfidenceLabel.HIGH
        assert sale.match_status == SaleMatchStatus.PENDING.value
        assert household.status == "quoted"
        assert await count_linked(db_session) == 0

    @pytest.mark.asyncio
    async def test_unknown_sale(self, service, agency_id):
        with pytest.raises(ValueError, match="not found"):
            await service.match_sale_to_household(agency_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_sold_households_are_not_candidates(self, service, db_session, agency_id):
        sold = make_household(agency_id)
        sold.status = "sold"
        sale = make_sale(agency_id)
        db_session.add_all([sold, sale])
        await db_session.commit()

        result = await service.match_sale_to_household(agency_id, sale.id)

        assert result.candidates == []


class TestBackfillSalesMatching:
    """Bulk matching of sales with no household."""

    @pytest.mark.asyncio
    async def test_backfill_links_flags_and_reports(self, service, db_session, agency_id):
        # Linkable: one candidate
        smith = make_household(agency_id, quotes=[make_quote(agency_id)])
        smith_sale = make_sale(agency_id)

        # Ambiguous: two identical candidates
        lee_a = make_household(agency_id, last_name="Lee", first_name="Ann", quotes=[make_quote(agency_id)])
        lee_b = make_household(agency_id, last_name="Lee", first_name="Ann", quotes=[make_quote(agency_id)])
        lee_sale = make_sale(agency_id, last_name="Lee", first_name="Ann")

        # No candidates
        orphan_sale = make_sale(agency_id, last_name="Nobody", first_name="Here")

        db_session.add_all([smith, lee_a, lee_b, smith_sale, lee_sale, orphan_sale])
        await db_session.commit()

        summary = await service.backfill_sales_matching(agency_id)

        assert summary.scanned == 3
        assert summary.linked == 1
        assert summary.needs_review == 1
        assert summary.no_match == 1
        assert summary.errors == 0

        assert smith_sale.household_id == smith.id
        assert lee_sale.match_status == SaleMatchStatus.NEEDS_REVIEW.value
        assert lee_a.attention_reason == AttentionReason.AMBIGUOUS_MATCH.value
        assert lee_b.attention_reason == AttentionReason.AMBIGUOUS_MATCH.value
        assert orphan_sale.match_status == SaleMatchStatus.NO_MATCH.value

        again = await service.backfill_sales_matching(agency_id)
        assert again.scanned == 2
        assert again.linked == 0
        assert await count_linked(db_session) == 1

    @pytest.mark.asyncio
    async def test_one_failing_sale_does_not_stop_the_run(self, service, db_session, agency_id):
        good = make_household(agency_id)
        good_sale = make_sale(agency_id)
        bad_sale = make_sale(agency_id, last_name="Broken", first_name="Row")
        db_session.add_all([good, good_sale, bad_sale])
        await db_session.commit()

        original = service.evaluate_sale

        async def flaky(sale):
            if sale.id == bad_sale.id:
                raise RuntimeError(f"scoring failed for {sale.last_name}, {sale.first_name}")
            return await original(sale)

        service.evaluate_sale = flaky

        summary = await service.backfill_sales_matching(agency_id)

        assert summary.errors == 1
        assert summary.linked == 1
        assert good_sale.match_status == SaleMatchStatus.LINKED.value

        failed = [r for r in summary.results if r["status"] == "error"]
        assert failed == [{"sale_id": str(bad_sale.id), "status": "error", "error": "RuntimeError"}]
        assert "Broken" not in str(summary.to_dict())
