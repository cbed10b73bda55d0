"""
Agency Pipeline - Database Models

Lead -> quote -> sale tracking for an agency.

Tables:
- lead_sources: named origins of leads
- lqs_households: pipeline unit (open / quoted / sold)
- lqs_quotes: quote lines offered to a household
- sales / sale_policies: closed transactions and their policy lines
- lqs_sales: sale linkage, one row per linked policy line
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, Any

from sqlalchemy import (
    Column, String, Integer, Boolean, Date, DateTime, ForeignKey,
    UniqueConstraint, Index, Uuid
)
from sqlalchemy.orm import relationship

from database.connection import Base
from models.enums import HouseholdStatus, SaleMatchStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class LeadSourceDB(Base):
    """Agency-scoped lead source (e.g. a vendor or referral channel)."""
    __tablename__ = "lead_sources"
    __table_args__ = (
        UniqueConstraint("agency_id", "name", name="uq_lead_sources_name"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class HouseholdDB(Base):
    """
    Pipeline household.

    Several households may share a household key (a second lead from a
    different source is kept as its own household flagged source_conflict).
    """
    __tablename__ = "lqs_households"
    __table_args__ = (
        Index("ix_lqs_households_agency_key", "agency_id", "household_key"),
        Index("ix_lqs_households_agency_contact", "agency_id", "contact_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    household_key = Column(String(255), nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100), nullable=False)
    zip_code = Column(String(10))
    phone = Column(String(20))
    email = Column(String(255))

    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=True)
    lead_source_id = Column(Uuid, ForeignKey("lead_sources.id"), nullable=True)
    team_member_id = Column(Uuid, nullable=True)

    status = Column(String(20), nullable=False, default=HouseholdStatus.OPEN.value)
    needs_attention = Column(Boolean, nullable=False, default=False)
    attention_reason = Column(String(50), nullable=True)
    conflicting_lead_source_id = Column(Uuid, ForeignKey("lead_sources.id"), nullable=True)

    first_quote_date = Column(Date, nullable=True)
    sold_date = Column(Date, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    quotes = relationship(
        "QuoteDB",
        back_populates="household",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="QuoteDB.quote_date"
    )

    def flag(self, reason: str) -> None:
        self.needs_attention = True
        self.attention_reason = reason

    def clear_attention(self) -> None:
        self.needs_attention = False
        self.attention_reason = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "agency_id": str(self.agency_id),
            "household_key": self.household_key,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "zip_code": self.zip_code,
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "lead_source_id": str(self.lead_source_id) if self.lead_source_id else None,
            "team_member_id": str(self.team_member_id) if self.team_member_id else None,
            "status": self.status,
            "needs_attention": self.needs_attention,
            "attention_reason": self.attention_reason,
            "conflicting_lead_source_id": (
                str(self.conflicting_lead_source_id) if self.conflicting_lead_source_id else None
            ),
            "first_quote_date": self.first_quote_date.isoformat() if self.first_quote_date else None,
            "sold_date": self.sold_date.isoformat() if self.sold_date else None,
            "quotes": [q.to_dict() for q in self.quotes],
        }


class QuoteDB(Base):
    """A quoted product line on a household."""
    __tablename__ = "lqs_quotes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    household_id = Column(Uuid, ForeignKey("lqs_households.id", ondelete="CASCADE"), nullable=False, index=True)
    product_type = Column(String(50), nullable=False)
    premium_cents = Column(Integer, nullable=False, default=0)
    items_quoted = Column(Integer, nullable=False, default=1)
    quote_date = Column(Date, nullable=False)
    team_member_id = Column(Uuid, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    household = relationship("HouseholdDB", back_populates="quotes")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "product_type": self.product_type,
            "premium_cents": self.premium_cents,
            "items_quoted": self.items_quoted,
            "quote_date": self.quote_date.isoformat() if self.quote_date else None,
            "team_member_id": str(self.team_member_id) if self.team_member_id else None,
        }


class SaleDB(Base):
    """
    A closed sale. Customer facts are immutable once written; only the
    matching columns (contact_id, household_id, match_status) change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        Index("ix_sales_agency_status", "agency_id", "match_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    first_name = Column(String(100))
    last_name = Column(String(100), nullable=False)
    zip_code = Column(String(10))
    phone = Column(String(20))
    email = Column(String(255))
    street_address = Column(String(255))
    city = Column(String(100))
    state = Column(String(50))
    sale_date = Column(Date, nullable=False)
    team_member_id = Column(Uuid, nullable=True)
    lead_source_id = Column(Uuid, ForeignKey("lead_sources.id"), nullable=True)

    contact_id = Column(Uuid, ForeignKey("agency_contacts.id"), nullable=True)
    household_id = Column(Uuid, ForeignKey("lqs_households.id"), nullable=True)
    match_status = Column(String(20), nullable=False, default=SaleMatchStatus.PENDING.value)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    policies = relationship(
        "SalePolicyDB",
        back_populates="sale",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SalePolicyDB.created_at"
    )

    @property
    def total_premium_cents(self) -> int:
        return sum(p.premium_cents or 0 for p in self.policies)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "agency_id": str(self.agency_id),
            "first_name": self.first_name,
            "last_name": self.last_name,
            "sale_date": self.sale_date.isoformat() if self.sale_date else None,
            "team_member_id": str(self.team_member_id) if self.team_member_id else None,
            "lead_source_id": str(self.lead_source_id) if self.lead_source_id else None,
            "contact_id": str(self.contact_id) if self.contact_id else None,
            "household_id": str(self.household_id) if self.household_id else None,
            "match_status": self.match_status,
            "total_premium_cents": self.total_premium_cents,
            "policies": [p.to_dict() for p in self.policies],
        }


class SalePolicyDB(Base):
    """One policy line on a sale."""
    __tablename__ = "sale_policies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    sale_id = Column(Uuid, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_type = Column(String(50), nullable=False)
    premium_cents = Column(Integer, nullable=False, default=0)
    policy_number = Column(String(50), nullable=True)
    items_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    sale = relationship("SaleDB", back_populates="policies")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "product_type": self.product_type,
            "premium_cents": self.premium_cents,
            "policy_number": self.policy_number,
            "items_count": self.items_count,
        }


class LinkedSaleDB(Base):
    """
    Sale linkage record.

    The identity tuple is enforced by the database; policy_number is stored
    as '' rather than NULL so a missing number still participates in the
    constraint.
    """
    __tablename__ = "lqs_sales"
    __table_args__ = (
        UniqueConstraint(
            "household_id", "sale_date", "product_type", "premium_cents", "policy_number",
            name="uq_linked_sale_identity"
        ),
        Index("ix_lqs_sales_sale", "sale_id"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    agency_id = Column(Uuid, nullable=False)
    household_id = Column(Uuid, ForeignKey("lqs_households.id"), nullable=False)
    sale_id = Column(Uuid, ForeignKey("sales.id"), nullable=False)
    sale_policy_id = Column(Uuid, ForeignKey("sale_policies.id"), nullable=True)
    sale_date = Column(Date, nullable=False)
    product_type = Column(String(50), nullable=False)
    premium_cents = Column(Integer, nullable=False)
    policy_number = Column(String(50), nullable=False, default="")
    items_sold = Column(Integer, nullable=False, default=1)
    team_member_id = Column(Uuid, nullable=True)
    match_confidence = Column(String(10), nullable=True)
    match_rules_version = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "household_id": str(self.household_id),
            "sale_id": str(self.sale_id),
            "sale_date": self.sale_date.isoformat() if self.sale_date else None,
            "product_type": self.product_type,
            "premium_cents": self.premium_cents,
            "policy_number": self.policy_number,
            "match_confidence": self.match_confidence,
            "match_rules_version": self.match_rules_version,
        }
