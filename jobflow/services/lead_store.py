"""
Lead store — the persistence contract the reconciliation core depends on.

Concurrency rules:
- update_lead() re-reads the row with SELECT ... FOR UPDATE before writing,
  so status checks are made against fresh data inside the same transaction.
- Write-once fields are written with a conditional UPDATE
  (WHERE field IS NULL OR trim(field) = ''): the emptiness check and the write are
  one statement, so two racing deliveries cannot both set the field.
- Every other field is last-writer-wins.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.errors import LeadNotFoundError, StatusConflictError
from jobflow.models.lead import Lead

logger = logging.getLogger(__name__)

# Phone/email lookups fetch two rows so duplicates can be detected and reported
DUPLICATE_LOOKUP_LIMIT = 2


@dataclass(frozen=True)
class FieldAssignment:
    field: str
    value: object


@dataclass
class UpdateOutcome:
    lead: Lead
    skipped_write_once: list[str] = field(default_factory=list)


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class LeadStore:
    """SQLAlchemy implementation of the lead read/write contract."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # --- Reads ---

    async def find_by_external_id(
        self, company_id: uuid.UUID, external_contact_id: str,
    ) -> list[Lead]:
        result = await self.db.execute(
            select(Lead)
            .where(
                Lead.company_id == company_id,
                Lead.external_contact_id == external_contact_id,
            )
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .limit(DUPLICATE_LOOKUP_LIMIT)
        )
        return list(result.scalars().all())

    async def find_by_phone(self, company_id: uuid.UUID, phone: str) -> list[Lead]:
        result = await self.db.execute(
            select(Lead)
            .where(Lead.company_id == company_id, Lead.phone == phone)
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .limit(DUPLICATE_LOOKUP_LIMIT)
        )
        return list(result.scalars().all())

    async def find_by_email(self, company_id: uuid.UUID, email: str) -> list[Lead]:
        result = await self.db.execute(
            select(Lead)
            .where(Lead.company_id == company_id, Lead.email == email)
            .order_by(Lead.created_at.asc(), Lead.id.asc())
            .limit(DUPLICATE_LOOKUP_LIMIT)
        )
        return list(result.scalars().all())

    async def get(self, lead_id: uuid.UUID, company_id: Optional[uuid.UUID] = None) -> Optional[Lead]:
        lead = await self.db.get(Lead, lead_id)
        if lead is None or (company_id is not None and lead.company_id != company_id):
            return None
        return lead

    async def lock_lead(self, lead_id: uuid.UUID) -> Optional[Lead]:
        """Fresh read of the row under a row lock (no-op lock on SQLite)."""
        result = await self.db.execute(
            select(Lead)
            .where(Lead.id == lead_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # --- Writes ---

    async def create_lead(self, fields: dict) -> Lead:
        lead = Lead(**fields)
        self.db.add(lead)
        await self.db.flush()
        logger.info(
            "Lead created: %s (company %s)",
            str(lead.id)[:8], str(lead.company_id)[:8],
            extra={"lead_id": str(lead.id), "company_id": str(lead.company_id)},
        )
        return lead

    async def update_lead(
        self,
        lead_id: uuid.UUID,
        assignments: Iterable[FieldAssignment],
        expected_status: Optional[str] = None,
        write_once: Iterable[FieldAssignment] = (),
    ) -> UpdateOutcome:
        """
        Apply field assignments to one lead.

        expected_status: when given, the write only happens if the row's
        current status still equals it; otherwise StatusConflictError.
        write_once: assignments applied only while the stored value is empty;
        the names of those that lost are returned in skipped_write_once.
        """
        lead = await self.lock_lead(lead_id)
        if lead is None:
            raise LeadNotFoundError(f"Lead {str(lead_id)[:8]} not found")

        if expected_status is not None and lead.status != expected_status:
            raise StatusConflictError(str(lead_id), expected_status, lead.status)

        values = {a.field: a.value for a in assignments}
        if values:
            stmt = update(Lead).where(Lead.id == lead_id)
            if expected_status is not None:
                stmt = stmt.where(Lead.status == expected_status)
            result = await self.db.execute(
                stmt.values(**values).execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                current = await self.lock_lead(lead_id)
                raise StatusConflictError(
                    str(lead_id), expected_status or "", current.status if current else "",
                )

        skipped = []
        for assignment in write_once:
            if is_blank(assignment.value):
                continue
            column = getattr(Lead, assignment.field)
            result = await self.db.execute(
                update(Lead)
                .where(Lead.id == lead_id, or_(column.is_(None), func.trim(column) == ""))
                .values({assignment.field: assignment.value})
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                skipped.append(assignment.field)
                logger.info(
                    "Write-once %s already set on lead %s, incoming value dropped",
                    assignment.field, str(lead_id)[:8],
                    extra={"lead_id": str(lead_id)},
                )

        await self.db.flush()
        await self.db.refresh(lead)
        return UpdateOutcome(lead=lead, skipped_write_once=skipped)
