"""
Inbound lead ingestion — webhook payload to persisted lead.

Pipeline: normalize → resolve company → (contact lock) → match → plan merge
→ write → audit → commit → dispatch sync.

Deliveries for the same contact are serialized with a Redis lock so two
first deliveries cannot both create a lead; the unique constraint on
(company_id, external_contact_id) backs that up when Redis is unavailable.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.errors import UnknownCompanyError
from jobflow.models.company import Company
from jobflow.models.event_log import EventLog
from jobflow.models.lead import SYNC_SOURCE_EXTERNAL
from jobflow.services.contact_normalizer import normalize_contact
from jobflow.services.lead_matcher import find_matching_lead
from jobflow.services.lead_store import LeadStore
from jobflow.services.merge_policy import plan_merge, skipped_write_once
from jobflow.services.sync_dispatcher import SyncDispatcher, SyncNotification, get_sync_dispatcher
from jobflow.utils.locks import contact_lock
from jobflow.utils.logging import mask_phone

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    lead_id: uuid.UUID
    company_id: uuid.UUID
    created: bool
    changed_fields: list[str] = field(default_factory=list)
    skipped_write_once: list[str] = field(default_factory=list)

    @property
    def message(self) -> str:
        return "Lead created" if self.created else "Lead updated"


async def resolve_company(db: AsyncSession, location_id: str) -> Company:
    """Company owning a GoHighLevel location. Raises UnknownCompanyError."""
    result = await db.execute(
        select(Company).where(Company.ghl_location_id == location_id)
    )
    company = result.scalar_one_or_none()
    if company is None or not company.is_active:
        logger.warning("No active company for location %s", location_id)
        raise UnknownCompanyError(
            "Company not found for this location", location_id=location_id,
        )
    return company


async def ingest_webhook_contact(
    db: AsyncSession,
    payload: dict,
    now: Optional[datetime] = None,
    dispatcher: Optional[SyncDispatcher] = None,
) -> IngestResult:
    """
    Create or update the lead a CRM contact payload refers to.

    Raises MissingTenantScopeError / UnknownCompanyError before anything is
    written. Commits on success; on any other failure the caller rolls back.
    """
    contact = normalize_contact(payload)
    company = await resolve_company(db, contact.location_id)
    now = now or datetime.now(timezone.utc)
    store = LeadStore(db)

    async with contact_lock(str(company.id), contact.match_key()):
        existing = await find_matching_lead(store, contact, company.id)
        plan = plan_merge(existing, contact, now)

        if plan.action == "create":
            lead = await store.create_lead({**plan.create_fields, "company_id": company.id})
            result = IngestResult(
                lead_id=lead.id,
                company_id=company.id,
                created=True,
                changed_fields=plan.changed_fields(),
            )
            previous_status = None
        else:
            previous_status = existing.status
            changed = plan.changed_fields(existing)
            already_set = skipped_write_once(existing, contact)

            outcome = await store.update_lead(
                existing.id, plan.assignments, write_once=plan.write_once,
            )
            lead = outcome.lead
            lost = outcome.skipped_write_once
            result = IngestResult(
                lead_id=lead.id,
                company_id=company.id,
                created=False,
                changed_fields=[name for name in changed if name not in lost],
                skipped_write_once=already_set + [name for name in lost if name not in already_set],
            )

        db.add(EventLog(
            lead_id=lead.id,
            company_id=company.id,
            action="lead_created" if result.created else "lead_updated",
            source=SYNC_SOURCE_EXTERNAL,
            message=f"{result.message} from CRM webhook",
            data={
                "external_contact_id": contact.external_contact_id,
                "changed_fields": result.changed_fields,
            },
        ))
        if result.skipped_write_once:
            db.add(EventLog(
                lead_id=lead.id,
                company_id=company.id,
                action="write_once_skipped",
                status="skipped",
                source=SYNC_SOURCE_EXTERNAL,
                message="Incoming provenance ignored, lead already has a value",
                data={"fields": result.skipped_write_once},
            ))

        await db.commit()

    logger.info(
        "Webhook %s lead %s (company %s, phone %s, changed %s)",
        "created" if result.created else "updated",
        str(result.lead_id)[:8], str(company.id)[:8],
        mask_phone(contact.phone), ",".join(result.changed_fields) or "-",
        extra={"lead_id": str(result.lead_id), "company_id": str(company.id), "source": SYNC_SOURCE_EXTERNAL},
    )

    (dispatcher or get_sync_dispatcher()).dispatch(SyncNotification(
        lead_id=result.lead_id,
        company_id=company.id,
        change_summary={
            "source": SYNC_SOURCE_EXTERNAL,
            "action": "created" if result.created else "updated",
            "changed_fields": result.changed_fields,
            "previous_status": previous_status,
            "status": lead.status,
        },
    ))
    return result
