"""
Identity - Contact Resolver

Business logic for the unified contact identity:
- Find-or-create the canonical contact for a set of customer facts
- Merge partial facts without losing data (phone/email sets only grow)
- Lookup helpers shared by the pipeline and the backfill
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import scrub_pii
from models.enums import ResolutionMatchType
from .models import ContactDB, ContactPhoneDB, ContactEmailDB
from .normalization import (
    normalize_phone,
    normalize_email,
    generate_household_key,
    clean_text,
    coerce_uuid,
)

logger = logging.getLogger(__name__)

ADDRESS_FIELDS = ("street_address", "city", "state", "zip_code")


class IdentityEvent:
    """Event names for identity operations."""
    CONTACT_CREATED = "identity.contact_created"
    CONTACT_MATCHED = "identity.contact_matched"
    CONTACT_MERGED = "identity.contact_merged"
    CREATE_RACE_LOST = "identity.create_race_lost"


def log_identity_event(
    event_type: str,
    agency_id: Union[uuid.UUID, str],
    details: Optional[Dict[str, Any]] = None,
    contact_id: Optional[Union[uuid.UUID, str]] = None,
    actor: str = "system"
):
    """Log identity event for audit trail. Customer PII is stripped."""
    log_entry = {
        "event": event_type,
        "agency_id": str(agency_id),
        "contact_id": str(contact_id) if contact_id else None,
        "details": scrub_pii(details),
        "actor": actor,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Identity event: {event_type}", extra=log_entry)


@dataclass
class ContactFacts:
    """Customer facts after boundary normalization."""
    last_name: str
    first_name: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None

    @classmethod
    def from_raw(
        cls,
        last_name: Optional[str],
        first_name: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        street_address: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
    ) -> "ContactFacts":
        return cls(
            last_name=clean_text(last_name),
            first_name=clean_text(first_name),
            zip_code=clean_text(zip_code),
            phone=normalize_phone(phone),
            email=normalize_email(email),
            street_address=clean_text(street_address),
            city=clean_text(city),
            state=clean_text(state),
        )

    @property
    def household_key(self) -> str:
        return generate_household_key(self.first_name, self.last_name, self.zip_code)


@dataclass
class ResolutionResult:
    """Outcome of a resolve call."""
    contact: ContactDB
    created: bool
    match_type: ResolutionMatchType

    @property
    def contact_id(self) -> uuid.UUID:
        return self.contact.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "contact_id": str(self.contact.id),
            "created": self.created,
            "match_type": self.match_type.value,
            "contact": self.contact.to_dict(),
        }


class ContactResolver:
    """
    Resolves incoming customer facts to one canonical contact per agency.

    Match priority (first hit wins):
    1. normalized phone already on a contact's phone set
    2. exact household key
    3. create
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== LOOKUPS ====================

    async def get_contact(
        self,
        agency_id: Union[uuid.UUID, str],
        contact_id: Union[uuid.UUID, str]
    ) -> Optional[ContactDB]:
        """Find a contact by id within an agency."""
        result = await self.db.execute(
            select(ContactDB).where(
                ContactDB.id == coerce_uuid(contact_id, "contact_id"),
                ContactDB.agency_id == coerce_uuid(agency_id, "agency_id")
            )
        )
        return result.scalar_one_or_none()

    async def find_by_phone(self, agency_id: uuid.UUID, phone: str) -> Optional[ContactDB]:
        """
        Find the agency contact whose phone set holds a canonical phone.
        The oldest contact wins when several share the number.
        """
        result = await self.db.execute(
            select(ContactDB)
            .join(ContactPhoneDB, ContactPhoneDB.contact_id == ContactDB.id)
            .where(
                ContactPhoneDB.agency_id == agency_id,
                ContactDB.agency_id == agency_id,
                ContactPhoneDB.phone == phone
            )
            .order_by(ContactDB.created_at, ContactDB.id)
            .limit(1)
        )
        return result.scalars().first()

    async def find_by_household_key(self, agency_id: uuid.UUID, household_key: str) -> Optional[ContactDB]:
        result = await self.db.execute(
            select(ContactDB).where(
                ContactDB.agency_id == agency_id,
                ContactDB.household_key == household_key
            )
        )
        return result.scalar_one_or_none()

    # ==================== RESOLUTION ====================

    async def resolve_contact(
        self,
        agency_id: Union[uuid.UUID, str],
        last_name: Optional[str],
        first_name: Optional[str] = None,
        zip_code: Optional[str] = None,
        phone: Optional[str] = None,
        email: Optional[str] = None,
        street_address: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        commit: bool = True
    ) -> ResolutionResult:
        """
        Find or create the contact for a set of customer facts.

        Args:
            agency_id: Owning agency (required)
            last_name: Customer last name (required)
            commit: Commit when done; callers running inside a larger unit
                of work pass False and commit themselves

        Returns:
            ResolutionResult with the contact, whether it was created, and
            which rule matched

        Raises:
            ValueError: If agency_id or last_name is missing. Nothing is
                written in that case.
        """
        if not agency_id:
            raise ValueError("agency_id is required")
        agency_id = coerce_uuid(agency_id, "agency_id")
        if not clean_text(last_name):
            raise ValueError("last_name is required")

        facts = ContactFacts.from_raw(
            last_name=last_name,
            first_name=first_name,
            zip_code=zip_code,
            phone=phone,
            email=email,
            street_address=street_address,
            city=city,
            state=state,
        )
        household_key = facts.household_key

        contact = None
        match_type = ResolutionMatchType.CREATED

        if facts.phone:
            contact = await self.find_by_phone(agency_id, facts.phone)
            if contact:
                match_type = ResolutionMatchType.PHONE

        if contact is None:
            contact = await self.find_by_household_key(agency_id, household_key)
            if contact:
                match_type = ResolutionMatchType.HOUSEHOLD_KEY

        created = False
        if contact is not None:
            contact = await self.merge_facts(contact, facts)
            log_identity_event(
                IdentityEvent.CONTACT_MATCHED,
                agency_id,
                {"match_type": match_type.value},
                contact_id=contact.id
            )
        else:
            contact, created = await self.get_or_create_by_key(agency_id, household_key, facts)
            if not created:
                match_type = ResolutionMatchType.HOUSEHOLD_KEY

        if commit:
            await self.db.commit()
        else:
            await self.db.flush()

        return ResolutionResult(contact=contact, created=created, match_type=match_type)

    async def get_or_create_by_key(
        self,
        agency_id: uuid.UUID,
        household_key: str,
        facts: ContactFacts
    ):
        """
        Create a contact under a household key, or merge into the one that
        already holds it.

        Returns:
            Tuple of (ContactDB, created: bool)
        """
        existing = await self.find_by_household_key(agency_id, household_key)
        if existing is not None:
            return await self.merge_facts(existing, facts), False

        contact = ContactDB(
            agency_id=agency_id,
            first_name=facts.first_name,
            last_name=facts.last_name,
            zip_code=facts.zip_code,
            street_address=facts.street_address,
            city=facts.city,
            state=facts.state,
            household_key=household_key,
            phone_entries=[],
            email_entries=[],
        )
        if facts.phone:
            contact.phone_entries.append(ContactPhoneDB(agency_id=agency_id, phone=facts.phone))
        if facts.email:
            contact.email_entries.append(ContactEmailDB(agency_id=agency_id, email=facts.email))

        try:
            async with self.db.begin_nested():
                self.db.add(contact)
        except IntegrityError:
            # Another writer created the same key first; merge into theirs
            winner = await self.find_by_household_key(agency_id, household_key)
            if winner is None:
                raise
            log_identity_event(IdentityEvent.CREATE_RACE_LOST, agency_id, contact_id=winner.id)
            return await self.merge_facts(winner, facts), False

        log_identity_event(
            IdentityEvent.CONTACT_CREATED,
            agency_id,
            {"has_phone": bool(facts.phone), "has_email": bool(facts.email)},
            contact_id=contact.id
        )
        return contact, True

    async def merge_facts(self, contact: ContactDB, facts: ContactFacts) -> ContactDB:
        """
        Merge facts into an existing contact.

        Phones and emails are appended only if absent, under a row lock.
        Address fields are filled only where currently null.
        """
        await self.db.flush()
        locked = await self._lock_contact(contact.id)

        added_phone = False
        added_email = False

        if facts.phone and facts.phone not in locked.phones:
            locked.phone_entries.append(ContactPhoneDB(agency_id=locked.agency_id, phone=facts.phone))
            added_phone = True

        if facts.email and facts.email not in locked.emails:
            locked.email_entries.append(ContactEmailDB(agency_id=locked.agency_id, email=facts.email))
            added_email = True

        filled = []
        for field in ADDRESS_FIELDS:
            value = getattr(facts, field)
            if value and getattr(locked, field) is None:
                setattr(locked, field, value)
                filled.append(field)

        if added_phone or added_email or filled:
            await self.db.flush()
            log_identity_event(
                IdentityEvent.CONTACT_MERGED,
                locked.agency_id,
                {"added_phone": added_phone, "added_email": added_email, "filled": filled},
                contact_id=locked.id
            )

        return locked

    async def _lock_contact(self, contact_id: uuid.UUID) -> ContactDB:
        """Re-read a contact under SELECT ... FOR UPDATE."""
        result = await self.db.execute(
            select(ContactDB)
            .where(ContactDB.id == contact_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
