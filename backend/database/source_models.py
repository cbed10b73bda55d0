"""
Legacy lifecycle module tables.

Each module recorded customer facts on its own rows with no shared identity
key. The backfill links these rows to agency contacts through contact_id.
The status columns are owned by the modules; the contact profile only reads
them to place a contact in its lifecycle stage.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import Column, String, Date, DateTime, ForeignKey, Index, Uuid

from database.connection import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value) -> Any:
    return value.isoformat() if value else None


class CancelAuditRecordDB(Base):
    """Policy at risk of cancellation. Has no postal code."""
    __tablename__ = "cancel_audit_records"
    __table_args__ = (
        Index("ix_cancel_audit_records_agency_contact", "agency_id", "contact_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    policy_number = Column(String(50))
    insured_first_name = Column(String(100))
    insured_last_name = Column(String(100))
    insured_phone = Column(String(50))
    insured_email = Column(String(255))
    cancel_date = Column(Date)
    cancel_status = Column(String(30))
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "policy_number": self.policy_number,
            "cancel_date": _iso(self.cancel_date),
            "cancel_status": self.cancel_status,
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "created_at": _iso(self.created_at),
        }


class RenewalRecordDB(Base):
    """Upcoming renewal being followed up. Has no postal code."""
    __tablename__ = "renewal_records"
    __table_args__ = (
        Index("ix_renewal_records_agency_contact", "agency_id", "contact_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    policy_number = Column(String(50))
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50))
    email = Column(String(255))
    renewal_date = Column(Date)
    current_status = Column(String(30))
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "policy_number": self.policy_number,
            "renewal_date": _iso(self.renewal_date),
            "current_status": self.current_status,
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "created_at": _iso(self.created_at),
        }


class WinbackHouseholdDB(Base):
    """Lost customer targeted for win-back. Carries a full address."""
    __tablename__ = "winback_households"
    __table_args__ = (
        Index("ix_winback_households_agency_contact", "agency_id", "contact_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100))
    phone = Column(String(50))
    email = Column(String(255))
    street_address = Column(String(255))
    city = Column(String(100))
    state = Column(String(50))
    zip_code = Column(String(10))
    status = Column(String(30))
    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "status": self.status,
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "created_at": _iso(self.created_at),
        }
