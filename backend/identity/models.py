"""
Identity - Database Models

SQLAlchemy models for the unified contact identity:
- AgencyContact: canonical customer record per agency
- Phone / email sets (one row per value, append-only)
- Contact activity timeline (append-only)
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any, List

from sqlalchemy import (
    Column, String, Integer, DateTime, ForeignKey, Text, Uuid,
    UniqueConstraint, Index
)
from sqlalchemy.orm import relationship

from database.connection import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ContactDB(Base):
    """
    Agency Contact - Central Identity Table

    One row per real customer within an agency. household_key is unique
    within the agency; phones and emails only ever grow.
    """
    __tablename__ = "agency_contacts"
    __table_args__ = (
        UniqueConstraint("agency_id", "household_key", name="uq_agency_contacts_household_key"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100), nullable=False)
    zip_code = Column(String(10))
    street_address = Column(String(255))
    city = Column(String(100))
    state = Column(String(50))
    household_key = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    # Relationships
    phone_entries = relationship(
        "ContactPhoneDB",
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContactPhoneDB.created_at"
    )
    email_entries = relationship(
        "ContactEmailDB",
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContactEmailDB.created_at"
    )

    @property
    def phones(self) -> List[str]:
        return [p.phone for p in self.phone_entries]

    @property
    def emails(self) -> List[str]:
        return [e.email for e in self.email_entries]

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p for p in parts if p)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "agency_id": str(self.agency_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "zip_code": self.zip_code,
            "street_address": self.street_address,
            "city": self.city,
            "state": self.state,
            "household_key": self.household_key,
            "phones": self.phones,
            "emails": self.emails,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }


class ContactPhoneDB(Base):
    """A normalized phone number on a contact's phone set."""
    __tablename__ = "agency_contact_phones"
    __table_args__ = (
        UniqueConstraint("contact_id", "phone", name="uq_agency_contact_phones_value"),
        Index("ix_agency_contact_phones_agency_phone", "agency_id", "phone"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id", ondelete="CASCADE"), nullable=False)
    agency_id = Column(Uuid, nullable=False)
    phone = Column(String(20), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    contact = relationship("ContactDB", back_populates="phone_entries")


class ContactEmailDB(Base):
    """A lower-cased email address on a contact's email set."""
    __tablename__ = "agency_contact_emails"
    __table_args__ = (
        UniqueConstraint("contact_id", "email", name="uq_agency_contact_emails_value"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id", ondelete="CASCADE"), nullable=False)
    agency_id = Column(Uuid, nullable=False)
    email = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    contact = relationship("ContactDB", back_populates="email_entries")


class ActivityDB(Base):
    """
    Contact Activity - unified cross-module timeline

    Append-only. Corrections are written as new entries.
    """
    __tablename__ = "contact_activities"
    __table_args__ = (
        Index("ix_contact_activities_contact", "agency_id", "contact_id", "created_at"),
        Index("ix_contact_activities_phone", "agency_id", "phone"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=False)
    source_module = Column(String(30), nullable=False)
    activity_type = Column(String(50), nullable=False)
    activity_subtype = Column(String(50))
    source_record_id = Column(String(100))
    phone = Column(String(20))
    call_direction = Column(String(20))
    call_duration_seconds = Column(Integer)
    outcome = Column(String(100))
    notes = Column(Text)
    created_by_display_name = Column(String(100))
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "agency_id": str(self.agency_id),
            "contact_id": str(self.contact_id),
            "source_module": self.source_module,
            "activity_type": self.activity_type,
            "activity_subtype": self.activity_subtype,
            "source_record_id": self.source_record_id,
            "phone": self.phone,
            "call_direction": self.call_direction,
            "call_duration_seconds": self.call_duration_seconds,
            "outcome": self.outcome,
            "notes": self.notes,
            "created_by_display_name": self.created_by_display_name,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
