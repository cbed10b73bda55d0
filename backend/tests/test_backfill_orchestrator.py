"""
Unit Tests for the Backfill Orchestrator

Tests linking legacy module rows to agency contacts:
- Three passes (phone link, key create, phone/key link)
- Re-runs on unchanged data are no-ops
- A failing row does not abort the run
- Multi-agency runs and stop requests

Run with: pytest tests/test_backfill_orchestrator.py -v
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backfill import BackfillOrchestrator, SOURCE_TABLES, get_source_table
from database.source_models import RenewalRecordDB, WinbackHouseholdDB, CancelAuditRecordDB
from identity.models import ContactDB
from identity.service import ContactResolver


def renewal(agency_id, last_name, first_name=None, phone=None, created_at=None, **kwargs):
    return RenewalRecordDB(
        agency_id=agency_id,
        first_name=first_name,
        last_name=last_name,
        phone=phone,
        created_at=created_at or datetime.now(timezone.utc),
        **kwargs
    )


async def count_contacts(db, agency_id):
    result = await db.execute(
        select(func.count()).select_from(ContactDB).where(ContactDB.agency_id == agency_id)
    )
    return result.scalar_one()


class TestSourceTables:

    def test_known_tables(self):
        assert set(SOURCE_TABLES) == {
            "lqs_households", "cancel_audit_records", "renewal_records", "winback_households"
        }

    def test_unknown_table(self):
        with pytest.raises(ValueError, match="Unknown source table"):
            get_source_table("billing_records")

    def test_row_without_last_name_has_no_key(self, agency_id):
        record = CancelAuditRecordDB(
            agency_id=agency_id, insured_first_name="Ann", insured_last_name="  "
        )
        row = get_source_table("cancel_audit_records").to_row(record)
        assert row.household_key is None

    def test_winback_rows_carry_address(self, agency_id):
        record = WinbackHouseholdDB(
            agency_id=agency_id, first_name="Ann", last_name="Lee", zip_code="2134",
            street_address="1 Main St", city="Boston", state="MA"
        )
        row = get_source_table("winback_households").to_row(record)

        assert row.household_key == "LEE_ANN_02134"
        assert row.to_facts().city == "Boston"


class TestRunBackfill:
    """Three-pass backfill of one table."""

    @pytest.mark.asyncio
    async def test_three_passes_link_every_reachable_row(self, db_session, agency_id):
        existing = await ContactResolver(db_session).resolve_contact(
            agency_id=agency_id, last_name="Smith", first_name="John", phone="404-555-1234"
        )

        by_phone = renewal(agency_id, "Smith", "John", phone="(404) 555-1234")
        older_doe = renewal(agency_id, "Doe", "Jane", created_at=datetime(2024, 1, 1, tzinfo=timezone.utc))
        newer_doe = renewal(agency_id, "Doe", "Jane", phone="555-222-3333",
                            created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))
        nameless = renewal(agency_id, "", "Ghost", phone="555-999-0000")
        db_session.add_all([by_phone, older_doe, newer_doe, nameless])
        await db_session.commit()

        result = await BackfillOrchestrator(db_session).run_backfill(agency_id, "renewal_records")

        assert result.processed == 4
        assert result.created == 1
        assert result.linked == 3
        assert result.skipped == 1
        assert result.errors == 0

        assert by_phone.contact_id == existing.contact_id
        assert older_doe.contact_id is not None
        assert older_doe.contact_id == newer_doe.contact_id
        assert nameless.contact_id is None

        doe = (await db_session.execute(
            select(ContactDB).where(ContactDB.household_key == "DOE_JANE_00000")
        )).scalar_one()
        # created from the most recent row
        assert doe.phones == ["5552223333"]

    @pytest.mark.asyncio
    async def test_rerun_on_unchanged_data_is_a_no_op(self, db_session, agency_id):
        db_session.add_all([
            renewal(agency_id, "Doe", "Jane", phone="555-222-3333"),
            renewal(agency_id, "Lee", "Ann"),
        ])
        await db_session.commit()

        orchestrator = BackfillOrchestrator(db_session)
        first = await orchestrator.run_backfill(agency_id, "renewal_records")
        contacts_after_first = await count_contacts(db_session, agency_id)

        second = await orchestrator.run_backfill(agency_id, "renewal_records")

        assert first.created == 2
        assert first.linked == 2
        assert second.processed == 0
        assert second.created == 0
        assert second.linked == 0
        assert await count_contacts(db_session, agency_id) == contacts_after_first

    @pytest.mark.asyncio
    async def test_rows_sharing_a_key_get_one_contact(self, db_session, agency_id):
        db_session.add_all([
            renewal(agency_id, "Lee", "Ann"),
            renewal(agency_id, "LEE", "ann"),
            renewal(agency_id, "Lee", "Ann", phone="617-555-0101"),
        ])
        await db_session.commit()

        result = await BackfillOrchestrator(db_session, batch_size=2).run_backfill(agency_id, "renewal_records")

        assert result.created == 1
        assert result.linked == 3
        assert await count_contacts(db_session, agency_id) == 1

    @pytest.mark.asyncio
    async def test_other_agencies_untouched(self, db_session, agency_id, other_agency_id):
        foreign = renewal(other_agency_id, "Lee", "Ann")
        db_session.add(foreign)
        await db_session.commit()

        result = await BackfillOrchestrator(db_session).run_backfill(agency_id, "renewal_records")

        assert result.processed == 0
        assert foreign.contact_id is None

    @pytest.mark.asyncio
    async def test_failing_row_is_isolated(self, db_session, agency_id):
        await ContactResolver(db_session).resolve_contact(
            agency_id=agency_id, last_name="Smith", first_name="John", phone="404-555-1234"
        )
        good = renewal(agency_id, "Smith", "John", phone="404-555-1234")
        bad = renewal(agency_id, "Lee", "Ann", phone="555-000-0000")
        db_session.add_all([good, bad])
        await db_session.commit()

        orchestrator = BackfillOrchestrator(db_session)
        original = orchestrator.resolver.find_by_phone

        async def flaky(agency, phone):
            if phone == "5550000000":
                raise RuntimeError("lookup failed")
            return await original(agency, phone)

        orchestrator.resolver.find_by_phone = flaky

        result = await orchestrator.run_backfill(agency_id, "renewal_records")

        # the bad row fails in pass 1 and pass 3 but is counted once
        assert result.errors == 1
        assert {d["row_id"] for d in result.error_details} == {str(bad.id)}
        assert result.linked == 1
        assert good.contact_id is not None
        assert bad.contact_id is None

    @pytest.mark.asyncio
    async def test_error_details_carry_no_customer_facts(self, db_session, agency_id, caplog):
        record = renewal(agency_id, "Lee", "Ann", phone="617-555-0101")
        db_session.add(record)
        await db_session.commit()

        orchestrator = BackfillOrchestrator(db_session)

        async def failing_insert(agency, household_key, facts):
            raise IntegrityError(
                "INSERT INTO agency_contacts (last_name, first_name, phone) VALUES (?, ?, ?)",
                (facts.last_name, facts.first_name, facts.phone),
                Exception("UNIQUE constraint failed"),
            )

        orchestrator.resolver.get_or_create_by_key = failing_insert

        result = await orchestrator.run_backfill(agency_id, "renewal_records")

        assert result.errors == 1
        assert [d["error"] for d in result.error_details] == ["IntegrityError"]
        report = str(result.to_dict())
        for fact in ("Lee", "Ann", "6175550101"):
            assert fact not in report
            assert fact not in caplog.text

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, db_session, agency_id):
        with pytest.raises(ValueError):
            await BackfillOrchestrator(db_session).run_backfill(agency_id, "billing_records")


class TestRunForAgencies:

    @pytest.mark.asyncio
    async def test_each_agency_gets_a_report(self, db_session, agency_id, other_agency_id):
        db_session.add_all([
            renewal(agency_id, "Lee", "Ann"),
            renewal(other_agency_id, "Doe", "Jane"),
        ])
        await db_session.commit()

        reports = await BackfillOrchestrator(db_session).run_for_agencies(
            [agency_id, other_agency_id], tables=["renewal_records"]
        )

        assert [r.agency_id for r in reports] == [agency_id, other_agency_id]
        assert all(r.tables["renewal_records"].linked == 1 for r in reports)
        assert all(r.sales is not None and r.sales.scanned == 0 for r in reports)
        assert reports[0].to_dict()["errors"] == 0

    @pytest.mark.asyncio
    async def test_stop_request_skips_remaining_agencies(self, db_session, agency_id, other_agency_id):
        reports = await BackfillOrchestrator(db_session).run_for_agencies(
            [agency_id, other_agency_id], should_stop=lambda: True
        )
        assert reports == []

    @pytest.mark.asyncio
    async def test_without_sales(self, db_session, agency_id):
        report = await BackfillOrchestrator(db_session).run_agency(
            agency_id, tables=["cancel_audit_records"], include_sales=False
        )

        assert list(report.tables) == ["cancel_audit_records"]
        assert report.sales is None
