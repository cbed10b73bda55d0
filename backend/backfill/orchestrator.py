"""
Backfill Orchestrator

Links historical rows in the legacy module tables to agency contacts.

Three passes per table and agency:
1. link unlinked rows to an existing contact by phone
2. for rows still unlinked, get-or-create one contact per household key,
   using the most recently created row's facts
3. link again by phone, then by household key

Pass 2 creates targets that rows skipped in pass 1 can now reach, so a
single pass under-links. Every row runs in its own savepoint and every
pass commits, so an interrupted run leaves consistent state and a re-run
simply picks up what is still unlinked.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional, Callable, Iterable, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from identity.normalization import normalize_phone, coerce_uuid
from identity.service import ContactResolver
from logging_config import scrub_pii
from reconciliation.services.sale_link_service import SaleLinkService, SalesBackfillResult
from sentry_integration import capture_exception

from .sources import SOURCE_TABLES, SourceTable, SourceRow, get_source_table

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class BackfillEvent:
    """Event names for backfill runs."""
    TABLE_STARTED = "backfill.table_started"
    PASS_COMPLETED = "backfill.pass_completed"
    TABLE_COMPLETED = "backfill.table_completed"
    ROW_FAILED = "backfill.row_failed"
    AGENCY_COMPLETED = "backfill.agency_completed"
    STOPPED = "backfill.stopped"


def log_backfill_event(
    event_type: str,
    agency_id: Union[uuid.UUID, str],
    details: Optional[Dict[str, Any]] = None,
    source_table: Optional[str] = None
):
    """Log backfill event for audit trail."""
    log_entry = {
        "event": event_type,
        "agency_id": str(agency_id),
        "source_table": source_table,
        "details": scrub_pii(details),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }
    logger.info(f"Backfill event: {event_type}", extra=log_entry)


@dataclass
class BackfillResult:
    """Counts for one table backfill."""
    agency_id: uuid.UUID
    source_table: str
    processed: int = 0
    created: int = 0
    linked: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agency_id": str(self.agency_id),
            "source_table": self.source_table,
            "processed": self.processed,
            "created": self.created,
            "linked": self.linked,
            "skipped": self.skipped,
            "errors": self.errors,
            "error_details": self.error_details,
        }


@dataclass
class AgencyBackfillReport:
    """Results for every table (and optionally sales) of one agency."""
    agency_id: uuid.UUID
    tables: Dict[str, BackfillResult] = field(default_factory=dict)
    sales: Optional[SalesBackfillResult] = None

    @property
    def errors(self) -> int:
        total = sum(r.errors for r in self.tables.values())
        if self.sales is not None:
            total += self.sales.errors
        return total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agency_id": str(self.agency_id),
            "tables": {name: r.to_dict() for name, r in self.tables.items()},
            "sales": self.sales.to_dict() if self.sales else None,
            "errors": self.errors,
        }


class BackfillOrchestrator:
    """
    Runs the contact backfill for one or many agencies.

    Safe to re-run: on unchanged data a second run creates no contacts and
    links no rows.
    """

    def __init__(self, db: AsyncSession, batch_size: Optional[int] = None):
        self.db = db
        self.resolver = ContactResolver(db)
        self.batch_size = batch_size or get_settings().BACKFILL_BATCH_SIZE

    # ==================== ENTRY POINTS ====================

    async def run_backfill(self, agency_id: Union[uuid.UUID, str], source_table: str) -> BackfillResult:
        """
        Backfill one legacy table for one agency.

        Raises:
            ValueError: Unknown table or malformed agency id
        """
        agency_id = coerce_uuid(agency_id, "agency_id")
        table = get_source_table(source_table)
        result = BackfillResult(agency_id=agency_id, source_table=table.name)

        pending = await self._unlinked_ids(table, agency_id)
        result.processed = len(pending)
        log_backfill_event(
            BackfillEvent.TABLE_STARTED, agency_id, {"unlinked": result.processed}, table.name
        )
        if not pending:
            return result

        await self._link_pass(table, agency_id, result, pass_number=1, use_household_key=False)
        await self._create_pass(table, agency_id, result)
        await self._link_pass(table, agency_id, result, pass_number=3, use_household_key=True)

        log_backfill_event(
            BackfillEvent.TABLE_COMPLETED,
            agency_id,
            {k: v for k, v in result.to_dict().items() if k != "error_details"},
            table.name
        )
        return result

    async def run_agency(
        self,
        agency_id: Union[uuid.UUID, str],
        tables: Optional[Iterable[str]] = None,
        include_sales: bool = True
    ) -> AgencyBackfillReport:
        """Backfill every (or the given) source table, then match unmatched sales."""
        agency_id = coerce_uuid(agency_id, "agency_id")
        table_names = list(tables) if tables else list(SOURCE_TABLES)
        for name in table_names:
            get_source_table(name)

        report = AgencyBackfillReport(agency_id=agency_id)
        for name in table_names:
            report.tables[name] = await self.run_backfill(agency_id, name)

        if include_sales:
            report.sales = await SaleLinkService(self.db).backfill_sales_matching(agency_id)

        log_backfill_event(BackfillEvent.AGENCY_COMPLETED, agency_id, {"errors": report.errors})
        return report

    async def run_for_agencies(
        self,
        agency_ids: Iterable[Union[uuid.UUID, str]],
        tables: Optional[Iterable[str]] = None,
        include_sales: bool = True,
        should_stop: Optional[Callable[[], bool]] = None
    ) -> List[AgencyBackfillReport]:
        """
        Backfill several agencies in turn.

        should_stop is checked between agencies; each agency that starts is
        finished, so stopping never leaves a half-processed pass behind.
        """
        table_names = list(tables) if tables else None
        reports = []
        for agency_id in agency_ids:
            if should_stop is not None and should_stop():
                log_backfill_event(BackfillEvent.STOPPED, agency_id, {"completed_agencies": len(reports)})
                break
            reports.append(await self.run_agency(agency_id, table_names, include_sales))
        return reports

    # ==================== PASSES ====================

    async def _link_pass(
        self,
        table: SourceTable,
        agency_id: uuid.UUID,
        result: BackfillResult,
        pass_number: int,
        use_household_key: bool
    ):
        linked_before = result.linked
        ids = await self._unlinked_ids(table, agency_id)

        for chunk in self._chunks(ids):
            for record in await self._load_unlinked(table, agency_id, chunk):
                row = table.to_row(record)
                try:
                    async with self.db.begin_nested():
                        contact = await self._find_contact(agency_id, row, use_household_key)
                        if contact is not None:
                            record.contact_id = contact.id
                except Exception as e:
                    self._record_error(result, table, agency_id, [row.id], pass_number, e)
                    continue

                if contact is not None:
                    result.linked += 1

        await self.db.commit()
        log_backfill_event(
            BackfillEvent.PASS_COMPLETED,
            agency_id,
            {"pass": pass_number, "linked": result.linked - linked_before},
            table.name
        )

    async def _create_pass(self, table: SourceTable, agency_id: uuid.UUID, result: BackfillResult):
        groups: Dict[str, List[SourceRow]] = {}
        ids = await self._unlinked_ids(table, agency_id)

        for chunk in self._chunks(ids):
            for record in await self._load_unlinked(table, agency_id, chunk):
                row = table.to_row(record)
                key = row.household_key
                if key is None:
                    result.skipped += 1
                    continue
                groups.setdefault(key, []).append(row)

        created_before = result.created
        for household_key, rows in groups.items():
            latest = max(rows, key=self._recency)
            try:
                async with self.db.begin_nested():
                    _, created = await self.resolver.get_or_create_by_key(
                        agency_id, household_key, latest.to_facts()
                    )
            except Exception as e:
                self._record_error(result, table, agency_id, [r.id for r in rows], 2, e)
                continue

            if created:
                result.created += 1

        await self.db.commit()
        log_backfill_event(
            BackfillEvent.PASS_COMPLETED,
            agency_id,
            {"pass": 2, "keys": len(groups), "created": result.created - created_before},
            table.name
        )

    # ==================== HELPERS ====================

    async def _find_contact(self, agency_id: uuid.UUID, row: SourceRow, use_household_key: bool):
        phone = normalize_phone(row.phone)
        if phone:
            contact = await self.resolver.find_by_phone(agency_id, phone)
            if contact is not None:
                return contact

        if use_household_key:
            key = row.household_key
            if key:
                return await self.resolver.find_by_household_key(agency_id, key)
        return None

    async def _unlinked_ids(self, table: SourceTable, agency_id: uuid.UUID) -> List[uuid.UUID]:
        model = table.model
        result = await self.db.execute(
            select(model.id)
            .where(model.agency_id == agency_id, model.contact_id.is_(None))
            .order_by(model.created_at, model.id)
        )
        return [row[0] for row in result.all()]

    async def _load_unlinked(self, table: SourceTable, agency_id: uuid.UUID, ids: List[uuid.UUID]):
        model = table.model
        result = await self.db.execute(
            select(model)
            .where(
                model.id.in_(ids),
                model.agency_id == agency_id,
                model.contact_id.is_(None)
            )
            .order_by(model.created_at, model.id)
        )
        return list(result.scalars().all())

    def _chunks(self, ids: List[uuid.UUID]):
        for start in range(0, len(ids), self.batch_size):
            yield ids[start:start + self.batch_size]

    @staticmethod
    def _recency(row: SourceRow):
        created = row.created_at
        if created is not None and created.tzinfo is None:
            # SQLite hands back naive timestamps
            created = created.replace(tzinfo=timezone.utc)
        return (created is not None, created or _EPOCH, str(row.id))

    def _record_error(
        self,
        result: BackfillResult,
        table: SourceTable,
        agency_id: uuid.UUID,
        row_ids: List[uuid.UUID],
        pass_number: int,
        error: Exception
    ):
        already_failed = {d["row_id"] for d in result.error_details}
        for row_id in row_ids:
            if str(row_id) not in already_failed:
                result.errors += 1
            result.error_details.append({
                "row_id": str(row_id),
                "pass": pass_number,
                "error": type(error).__name__,
            })

        logger.error(
            f"Backfill row failed in pass {pass_number} of {table.name}: {type(error).__name__}",
            extra={"agency_id": str(agency_id), "row_ids": [str(r) for r in row_ids]}
        )
        capture_exception(
            error,
            agency_id=str(agency_id),
            source_table=table.name,
            pass_number=pass_number,
            row_ids=[str(r) for r in row_ids]
        )
        log_backfill_event(
            BackfillEvent.ROW_FAILED, agency_id, {"pass": pass_number, "rows": len(row_ids)}, table.name
        )
