"""
Unit Tests for the Activity Logger

Tests the append-only contact timeline:
- Validation of module, call metadata and contact ownership
- Phone canonicalization on write and on filter
- Newest-first ordering

Run with: pytest tests/test_activity_logger.py -v
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from identity.activity import ActivityLogger
from identity.service import ContactResolver
from models.enums import CallDirection, SourceModule


@pytest.fixture
def activity(db_session):
    return ActivityLogger(db_session)


@pytest_asyncio.fixture
async def contact(db_session, agency_id):
    result = await ContactResolver(db_session).resolve_contact(
        agency_id=agency_id, last_name="Smith", first_name="John", phone="404-555-1234"
    )
    return result.contact


class TestLogActivity:
    """log_activity"""

    @pytest.mark.asyncio
    async def test_logs_call_with_canonical_phone(self, activity, contact, agency_id):
        entry = await activity.log_activity(
            contact_id=contact.id,
            agency_id=agency_id,
            source_module=SourceModule.RENEWAL,
            activity_type="call",
            phone="(404) 555-1234",
            call_direction="outbound",
            call_duration_seconds=120,
            outcome="left_voicemail",
            created_by_display_name="Dana",
        )

        assert entry.id is not None
        assert entry.source_module == "renewal"
        assert entry.phone == "4045551234"
        assert entry.to_dict()["call_direction"] == "outbound"

    @pytest.mark.asyncio
    async def test_accepts_call_direction_enum(self, activity, contact, agency_id):
        entry = await activity.log_activity(
            contact.id, agency_id, SourceModule.CANCEL_AUDIT, "call", call_direction=CallDirection.INBOUND
        )
        assert entry.call_direction == "inbound"

    @pytest.mark.asyncio
    async def test_accepts_module_as_string(self, activity, contact, agency_id):
        entry = await activity.log_activity(contact.id, agency_id, "winback", "note")
        assert entry.source_module == "winback"

    @pytest.mark.asyncio
    async def test_unparseable_phone_stored_as_null(self, activity, contact, agency_id):
        entry = await activity.log_activity(contact.id, agency_id, "lqs", "call", phone="ext 12")
        assert entry.phone is None

    @pytest.mark.asyncio
    async def test_unknown_module_rejected(self, activity, contact, agency_id):
        with pytest.raises(ValueError, match="source_module"):
            await activity.log_activity(contact.id, agency_id, "billing", "call")

    @pytest.mark.asyncio
    async def test_bad_call_metadata_rejected(self, activity, contact, agency_id):
        with pytest.raises(ValueError, match="call_direction"):
            await activity.log_activity(contact.id, agency_id, "lqs", "call", call_direction="sideways")
        with pytest.raises(ValueError, match="call_direction"):
            await activity.log_activity(contact.id, agency_id, "lqs", "call", call_direction="INBOUND")
        with pytest.raises(ValueError, match="negative"):
            await activity.log_activity(contact.id, agency_id, "lqs", "call", call_duration_seconds=-5)

    @pytest.mark.asyncio
    async def test_missing_activity_type_rejected(self, activity, contact, agency_id):
        with pytest.raises(ValueError, match="activity_type"):
            await activity.log_activity(contact.id, agency_id, "lqs", "  ")

    @pytest.mark.asyncio
    async def test_contact_from_other_agency_rejected(self, activity, contact, other_agency_id):
        with pytest.raises(ValueError, match="not found"):
            await activity.log_activity(contact.id, other_agency_id, "lqs", "call")

    @pytest.mark.asyncio
    async def test_unknown_contact_rejected(self, activity, agency_id):
        with pytest.raises(ValueError, match="not found"):
            await activity.log_activity(uuid.uuid4(), agency_id, "lqs", "call")


class TestTimeline:
    """list_timeline"""

    @pytest.mark.asyncio
    async def test_newest_first(self, activity, db_session, contact, agency_id):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for offset, kind in enumerate(["lead_received", "quoted", "policy_sold"]):
            entry = await activity.log_activity(contact.id, agency_id, "lqs", kind)
            entry.created_at = base + timedelta(days=offset)
        await db_session.commit()

        timeline = await activity.list_timeline(agency_id, contact_id=contact.id)

        assert [a.activity_type for a in timeline] == ["policy_sold", "quoted", "lead_received"]

    @pytest.mark.asyncio
    async def test_filter_by_phone_in_any_format(self, activity, contact, agency_id):
        await activity.log_activity(contact.id, agency_id, "cancel_audit", "call", phone="404-555-1234")
        await activity.log_activity(contact.id, agency_id, "cancel_audit", "call", phone="404-555-9999")

        timeline = await activity.list_timeline(agency_id, phone="+1 (404) 555-1234")

        assert len(timeline) == 1
        assert timeline[0].phone == "4045551234"

    @pytest.mark.asyncio
    async def test_unparseable_phone_filter_returns_nothing(self, activity, contact, agency_id):
        await activity.log_activity(contact.id, agency_id, "lqs", "call", phone="404-555-1234")

        assert await activity.list_timeline(agency_id, phone="12") == []

    @pytest.mark.asyncio
    async def test_timeline_scoped_to_agency(self, activity, contact, agency_id, other_agency_id):
        await activity.log_activity(contact.id, agency_id, "lqs", "call")

        assert await activity.list_timeline(other_agency_id) == []

    @pytest.mark.asyncio
    async def test_limit(self, activity, contact, agency_id):
        for _ in range(3):
            await activity.log_activity(contact.id, agency_id, "lqs", "note")

        assert len(await activity.list_timeline(agency_id, limit=2)) == 2
