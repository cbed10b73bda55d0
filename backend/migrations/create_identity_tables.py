"""
Database Migration: Create Identity and Pipeline Tables

Creates the contact identity tables, the lead/quote/sale pipeline tables,
and the contact_id link columns on the legacy module tables.

The linked-sale identity constraint is created here as a real unique
constraint so that no write path can insert a duplicate linkage row.

Run this script directly:
    cd backend && python migrations/create_identity_tables.py
"""

import asyncio
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text
from database.connection import get_engine, dispose_engine


SQL_STATEMENTS = [
    # Contacts
    """
    CREATE TABLE IF NOT EXISTS public.agency_contacts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        first_name VARCHAR(100),
        last_name VARCHAR(100) NOT NULL,
        zip_code VARCHAR(10),
        street_address VARCHAR(255),
        city VARCHAR(100),
        state VARCHAR(50),
        household_key VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_agency_contacts_household_key UNIQUE (agency_id, household_key)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.agency_contact_phones (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        contact_id UUID NOT NULL REFERENCES public.agency_contacts(id) ON DELETE CASCADE,
        agency_id UUID NOT NULL,
        phone VARCHAR(20) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_agency_contact_phones_value UNIQUE (contact_id, phone),
        CONSTRAINT agency_contact_phones_format CHECK (phone ~ '^[0-9]{10}$')
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.agency_contact_emails (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        contact_id UUID NOT NULL REFERENCES public.agency_contacts(id) ON DELETE CASCADE,
        agency_id UUID NOT NULL,
        email VARCHAR(255) NOT NULL,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_agency_contact_emails_value UNIQUE (contact_id, email)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.contact_activities (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        contact_id UUID NOT NULL REFERENCES public.agency_contacts(id),
        source_module VARCHAR(30) NOT NULL,
        activity_type VARCHAR(50) NOT NULL,
        activity_subtype VARCHAR(50),
        source_record_id VARCHAR(100),
        phone VARCHAR(20),
        call_direction VARCHAR(20),
        call_duration_seconds INTEGER,
        outcome VARCHAR(100),
        notes TEXT,
        created_by_display_name VARCHAR(100),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT contact_activities_module_check
            CHECK (source_module IN ('lqs', 'cancel_audit', 'renewal', 'winback'))
    )
    """,

    # Pipeline
    """
    CREATE TABLE IF NOT EXISTS public.lead_sources (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        name VARCHAR(100) NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT true,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_lead_sources_name UNIQUE (agency_id, name)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.lqs_households (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        household_key VARCHAR(255) NOT NULL,
        first_name VARCHAR(100),
        last_name VARCHAR(100) NOT NULL,
        zip_code VARCHAR(10),
        phone VARCHAR(20),
        email VARCHAR(255),
        contact_id UUID REFERENCES public.agency_contacts(id),
        lead_source_id UUID REFERENCES public.lead_sources(id),
        team_member_id UUID,
        status VARCHAR(20) NOT NULL DEFAULT 'open',
        needs_attention BOOLEAN NOT NULL DEFAULT false,
        attention_reason VARCHAR(50),
        conflicting_lead_source_id UUID REFERENCES public.lead_sources(id),
        first_quote_date DATE,
        sold_date DATE,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT lqs_households_status_check
            CHECK (status IN ('open', 'quoted', 'sold')),
        CONSTRAINT lqs_households_attention_check
            CHECK (attention_reason IS NULL OR attention_reason IN
                ('missing_lead_source', 'source_conflict', 'manual_review', 'ambiguous_match'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.lqs_quotes (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        household_id UUID NOT NULL REFERENCES public.lqs_households(id) ON DELETE CASCADE,
        product_type VARCHAR(50) NOT NULL,
        premium_cents INTEGER NOT NULL DEFAULT 0,
        items_quoted INTEGER NOT NULL DEFAULT 1,
        quote_date DATE NOT NULL,
        team_member_id UUID,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.sales (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        first_name VARCHAR(100),
        last_name VARCHAR(100) NOT NULL,
        zip_code VARCHAR(10),
        phone VARCHAR(20),
        email VARCHAR(255),
        street_address VARCHAR(255),
        city VARCHAR(100),
        state VARCHAR(50),
        sale_date DATE NOT NULL,
        team_member_id UUID,
        lead_source_id UUID REFERENCES public.lead_sources(id),
        contact_id UUID REFERENCES public.agency_contacts(id),
        household_id UUID REFERENCES public.lqs_households(id),
        match_status VARCHAR(20) NOT NULL DEFAULT 'pending',
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT sales_match_status_check
            CHECK (match_status IN ('pending', 'linked', 'needs_review', 'no_match'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.sale_policies (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        sale_id UUID NOT NULL REFERENCES public.sales(id) ON DELETE CASCADE,
        product_type VARCHAR(50) NOT NULL,
        premium_cents INTEGER NOT NULL DEFAULT 0,
        policy_number VARCHAR(50),
        items_count INTEGER NOT NULL DEFAULT 1,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS public.lqs_sales (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        agency_id UUID NOT NULL,
        household_id UUID NOT NULL REFERENCES public.lqs_households(id),
        sale_id UUID NOT NULL REFERENCES public.sales(id),
        sale_policy_id UUID REFERENCES public.sale_policies(id),
        sale_date DATE NOT NULL,
        product_type VARCHAR(50) NOT NULL,
        premium_cents INTEGER NOT NULL,
        policy_number VARCHAR(50) NOT NULL DEFAULT '',
        items_sold INTEGER NOT NULL DEFAULT 1,
        team_member_id UUID,
        match_confidence VARCHAR(10),
        match_rules_version VARCHAR(20),
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        CONSTRAINT uq_linked_sale_identity
            UNIQUE (household_id, sale_date, product_type, premium_cents, policy_number)
    )
    """,

    # Legacy module link columns
    "ALTER TABLE public.cancel_audit_records ADD COLUMN IF NOT EXISTS contact_id UUID REFERENCES public.agency_contacts(id)",
    "ALTER TABLE public.renewal_records ADD COLUMN IF NOT EXISTS contact_id UUID REFERENCES public.agency_contacts(id)",
    "ALTER TABLE public.winback_households ADD COLUMN IF NOT EXISTS contact_id UUID REFERENCES public.agency_contacts(id)",

    # Module status columns read by the contact profile
    "ALTER TABLE public.cancel_audit_records ADD COLUMN IF NOT EXISTS cancel_status VARCHAR(30)",
    "ALTER TABLE public.renewal_records ADD COLUMN IF NOT EXISTS current_status VARCHAR(30)",
    "ALTER TABLE public.winback_households ADD COLUMN IF NOT EXISTS status VARCHAR(30)",

    # Indexes
    "CREATE INDEX IF NOT EXISTS ix_agency_contacts_agency_id ON public.agency_contacts(agency_id)",
    "CREATE INDEX IF NOT EXISTS ix_agency_contact_phones_agency_phone ON public.agency_contact_phones(agency_id, phone)",
    "CREATE INDEX IF NOT EXISTS ix_contact_activities_contact ON public.contact_activities(agency_id, contact_id, created_at)",
    "CREATE INDEX IF NOT EXISTS ix_contact_activities_phone ON public.contact_activities(agency_id, phone)",
    "CREATE INDEX IF NOT EXISTS ix_lqs_households_agency_key ON public.lqs_households(agency_id, household_key)",
    "CREATE INDEX IF NOT EXISTS ix_lqs_households_agency_contact ON public.lqs_households(agency_id, contact_id)",
    "CREATE INDEX IF NOT EXISTS ix_lqs_quotes_household_id ON public.lqs_quotes(household_id)",
    "CREATE INDEX IF NOT EXISTS ix_sales_agency_status ON public.sales(agency_id, match_status)",
    "CREATE INDEX IF NOT EXISTS ix_sale_policies_sale_id ON public.sale_policies(sale_id)",
    "CREATE INDEX IF NOT EXISTS ix_lqs_sales_sale ON public.lqs_sales(sale_id)",
    "CREATE INDEX IF NOT EXISTS ix_cancel_audit_records_agency_contact ON public.cancel_audit_records(agency_id, contact_id)",
    "CREATE INDEX IF NOT EXISTS ix_renewal_records_agency_contact ON public.renewal_records(agency_id, contact_id)",
    "CREATE INDEX IF NOT EXISTS ix_winback_households_agency_contact ON public.winback_households(agency_id, contact_id)",
]


async def create_tables():
    """Create the identity and pipeline tables."""
    print("Creating identity tables...")

    engine = get_engine()
    async with engine.begin() as conn:
        for i, sql in enumerate(SQL_STATEMENTS):
            await conn.execute(text(sql))
            print(f"  ✓ Statement {i+1}/{len(SQL_STATEMENTS)} executed")

    await dispose_engine()
    print("\n✅ Identity tables created successfully!")


if __name__ == "__main__":
    asyncio.run(create_tables())
