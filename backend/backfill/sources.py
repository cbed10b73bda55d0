"""
Backfill source tables.

Each legacy module stores customer facts under its own column names. A
SourceTable maps those columns onto the fields the resolver understands.
Tables without a postal code (cancel audit, renewals) key on "00000".
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Tuple, Type

from database.pipeline_models import HouseholdDB
from database.source_models import CancelAuditRecordDB, RenewalRecordDB, WinbackHouseholdDB
from identity.normalization import generate_household_key
from identity.service import ContactFacts


@dataclass(frozen=True)
class SourceRow:
    """Customer facts read from one legacy row."""
    id: uuid.UUID
    created_at: Optional[datetime]
    first_name: Optional[str]
    last_name: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    zip_code: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None

    @property
    def household_key(self) -> Optional[str]:
        """None when the row has no usable last name."""
        try:
            return generate_household_key(self.first_name, self.last_name, self.zip_code)
        except ValueError:
            return None

    def to_facts(self) -> ContactFacts:
        return ContactFacts.from_raw(
            last_name=self.last_name,
            first_name=self.first_name,
            zip_code=self.zip_code,
            phone=self.phone,
            email=self.email,
            street_address=self.street_address,
            city=self.city,
            state=self.state,
        )


@dataclass(frozen=True)
class SourceTable:
    """Column mapping for one legacy table."""
    name: str
    model: Type
    first_name: str
    last_name: str
    phone: str
    email: str
    zip_code: Optional[str] = None
    address: Tuple[str, ...] = ()

    def to_row(self, record) -> SourceRow:
        values = {}
        if self.zip_code:
            values["zip_code"] = getattr(record, self.zip_code)
        for field in self.address:
            values[field] = getattr(record, field)

        return SourceRow(
            id=record.id,
            created_at=record.created_at,
            first_name=getattr(record, self.first_name),
            last_name=getattr(record, self.last_name),
            phone=getattr(record, self.phone),
            email=getattr(record, self.email),
            **values
        )


SOURCE_TABLES: Dict[str, SourceTable] = {
    "lqs_households": SourceTable(
        name="lqs_households",
        model=HouseholdDB,
        first_name="first_name",
        last_name="last_name",
        phone="phone",
        email="email",
        zip_code="zip_code",
    ),
    "cancel_audit_records": SourceTable(
        name="cancel_audit_records",
        model=CancelAuditRecordDB,
        first_name="insured_first_name",
        last_name="insured_last_name",
        phone="insured_phone",
        email="insured_email",
    ),
    "renewal_records": SourceTable(
        name="renewal_records",
        model=RenewalRecordDB,
        first_name="first_name",
        last_name="last_name",
        phone="phone",
        email="email",
    ),
    "winback_households": SourceTable(
        name="winback_households",
        model=WinbackHouseholdDB,
        first_name="first_name",
        last_name="last_name",
        phone="phone",
        email="email",
        zip_code="zip_code",
        address=("street_address", "city", "state"),
    ),
}


def get_source_table(name: str) -> SourceTable:
    try:
        return SOURCE_TABLES[name]
    except KeyError:
        raise ValueError(
            f"Unknown source table: {name}. Valid values: {sorted(SOURCE_TABLES)}"
        )
