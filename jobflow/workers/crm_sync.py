"""
CRM sync worker — pushes lead changes out to the company's GoHighLevel location.
CRITICAL: This runs AFTER the lead write commits. Never in the request's critical path.

Two entry points:
- handle_sync_notification(): registered with the sync dispatcher, runs once
  per UI write (webhook writes are not echoed back to the CRM).
- run_crm_sync(): background loop that retries failed pushes.

Retry logic:
- On failure: retry up to CRM_SYNC_MAX_RETRIES times with exponential backoff (30s, 2min, 10min, 30min, 2hr)
- After max retries: mark as permanently failed, alert admin
- Heartbeat stored in Redis for health monitoring
"""
import asyncio
import logging
import uuid
from datetime import datetime, timezone, timedelta
from typing import Optional

from sqlalchemy import select, or_, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.config import get_settings
from jobflow.database import async_session_factory
from jobflow.integrations.crm_base import CRMBase
from jobflow.integrations.ghl_mapper import (
    CalendarChange,
    appointment_slot,
    build_appointment_event,
    build_contact_payload,
    build_install_event,
    detect_appointment_change,
    detect_install_change,
    status_tag,
)
from jobflow.integrations.gohighlevel import GoHighLevelCRM
from jobflow.models.company import Company
from jobflow.models.event_log import EventLog
from jobflow.models.lead import Lead, SYNC_SOURCE_EXTERNAL, SYNC_SOURCE_UI
from jobflow.services.pipeline import parse_status
from jobflow.services.sync_dispatcher import SyncNotification

logger = logging.getLogger(__name__)

CRM_RETRY_DELAYS = [30, 120, 600, 1800, 7200]  # 30s, 2m, 10m, 30m, 2h
RETRY_BATCH_SIZE = 20
# UI writes whose dispatch never ran (process restart) are swept after this
STALE_PENDING_AFTER = timedelta(minutes=5)
HEARTBEAT_KEY = "jobflow:worker_health:crm_sync"


class CRMSyncError(Exception):
    """One or more CRM calls for a lead failed."""
    pass


async def _heartbeat():
    """Store heartbeat timestamp in Redis."""
    try:
        from jobflow.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.set(HEARTBEAT_KEY, datetime.now(timezone.utc).isoformat(), ex=300)
    except Exception as e:
        logger.debug("CRM sync heartbeat failed: %s", str(e))


def get_crm_for_company(company: Company) -> Optional[CRMBase]:
    """CRM integration for a company, or None when it has no GHL credentials."""
    if not company.has_crm:
        return None
    return GoHighLevelCRM(api_key=company.ghl_api_key, location_id=company.ghl_location_id)


# --- Dispatcher entry point ---

async def handle_sync_notification(notification: SyncNotification) -> None:
    """Push one committed lead write to the CRM."""
    if notification.source == SYNC_SOURCE_EXTERNAL:
        logger.debug(
            "Lead %s changed by CRM webhook, not echoing back",
            str(notification.lead_id)[:8],
        )
        return

    async with async_session_factory() as db:
        lead = await db.get(Lead, notification.lead_id)
        company = await db.get(Company, notification.company_id)
        if not lead or not company:
            logger.warning("Sync skipped, lead %s or its company is gone", str(notification.lead_id)[:8])
            return

        try:
            await sync_lead(
                db, lead, company,
                previous_status=notification.change_summary.get("previous_status"),
            )
        except CRMSyncError as e:
            await record_sync_failure(db, lead, str(e))
        await _commit_lead(db, lead.id)


# --- Core push ---

async def sync_lead(
    db: AsyncSession,
    lead: Lead,
    company: Company,
    previous_status: Optional[str] = None,
    force_tag: bool = False,
    crm: Optional[CRMBase] = None,
) -> None:
    """
    Upsert the contact, tag status changes and sync calendar events.
    Raises CRMSyncError on failure; the caller records the retry.
    """
    crm = crm or get_crm_for_company(company)
    if crm is None:
        lead.crm_sync_status = "skipped"
        return

    tag = status_tag(lead.status)

    if not lead.external_contact_id:
        created = await crm.upsert_contact(build_contact_payload(lead, tags=[tag] if tag else None))
        if not created.get("success"):
            raise CRMSyncError(f"Contact upsert failed: {created.get('error')}")
        owner_id = await _contact_owner(db, lead, created["contact_id"])
        if owner_id is not None:
            await record_duplicate_contact(db, lead, created["contact_id"], owner_id)
            return
        lead.external_contact_id = created["contact_id"]
    else:
        updated = await crm.update_contact(lead.external_contact_id, build_contact_payload(lead))
        if not updated.get("success"):
            raise CRMSyncError(f"Contact update failed: {updated.get('error')}")

        status_changed = (
            previous_status is not None
            and parse_status(previous_status) != parse_status(lead.status)
        )
        if tag and (status_changed or force_tag):
            tagged = await crm.add_tag(lead.external_contact_id, tag)
            if not tagged.get("success"):
                raise CRMSyncError(f"Status tag failed: {tagged.get('error')}")

    errors = await sync_calendars(crm, lead, company)
    if errors:
        raise CRMSyncError("; ".join(errors))

    now = datetime.now(timezone.utc)
    lead.crm_sync_status = "synced"
    lead.crm_sync_error = None
    lead.crm_sync_attempts = 0
    lead.crm_next_retry_at = None
    lead.last_synced_at = now

    db.add(EventLog(
        lead_id=lead.id,
        company_id=company.id,
        action="crm_sync_success",
        source=SYNC_SOURCE_UI,
        message="Lead pushed to GoHighLevel",
        data={"contact_id": lead.external_contact_id, "status": lead.status},
    ))
    logger.info(
        "Lead %s synced to GHL contact %s",
        str(lead.id)[:8], lead.external_contact_id,
        extra={"lead_id": str(lead.id), "company_id": str(company.id)},
    )


async def _sync_calendar(
    crm: CRMBase,
    lead: Lead,
    label: str,
    change: str,
    payload: Optional[dict],
    synced_value,
    id_attr: str,
    synced_attr: str,
) -> Optional[str]:
    """Apply one calendar change. Returns an error string or None."""
    event_id = getattr(lead, id_attr)

    if change == CalendarChange.CANCELLED:
        res = await crm.delete_calendar_event(event_id)
        if not res.get("success"):
            return f"{label} delete failed: {res.get('error')}"
        setattr(lead, id_attr, None)
        setattr(lead, synced_attr, None)
        return None

    if change not in (CalendarChange.NEW, CalendarChange.CHANGED):
        return None
    if payload is None:
        logger.info("No %s calendar configured for lead %s, skipping", label, str(lead.id)[:8])
        return None

    if change == CalendarChange.NEW:
        res = await crm.create_calendar_event({**payload, "contactId": lead.external_contact_id})
        if not res.get("success"):
            return f"{label} create failed: {res.get('error')}"
        setattr(lead, id_attr, res["event_id"])
    else:
        update = {k: v for k, v in payload.items() if k != "calendarId"}
        res = await crm.update_calendar_event(event_id, update)
        if not res.get("success"):
            return f"{label} update failed: {res.get('error')}"

    setattr(lead, synced_attr, synced_value)
    return None


async def sync_calendars(crm: CRMBase, lead: Lead, company: Company) -> list[str]:
    """Create/update/delete the appointment and install events for a lead."""
    errors = []

    appointment_error = await _sync_calendar(
        crm, lead, "appointment",
        detect_appointment_change(lead),
        build_appointment_event(lead, company),
        appointment_slot(lead),
        "appointment_event_id", "synced_appointment_at",
    )
    if appointment_error:
        errors.append(appointment_error)

    install_error = await _sync_calendar(
        crm, lead, "install",
        detect_install_change(lead),
        build_install_event(lead, company),
        lead.install_date,
        "install_event_id", "synced_install_date",
    )
    if install_error:
        errors.append(install_error)

    return errors


async def record_sync_failure(db: AsyncSession, lead: Lead, error: str) -> None:
    """Schedule a retry with backoff, or mark failed and alert after the last attempt."""
    max_retries = get_settings().crm_sync_max_retries
    attempts = (lead.crm_sync_attempts or 0) + 1
    lead.crm_sync_attempts = attempts

    logger.error(
        "CRM sync failed for lead %s (attempt %d/%d): %s",
        str(lead.id)[:8], attempts, max_retries, error,
        extra={"lead_id": str(lead.id), "company_id": str(lead.company_id)},
    )

    if attempts < max_retries:
        delay = CRM_RETRY_DELAYS[min(attempts - 1, len(CRM_RETRY_DELAYS) - 1)]
        lead.crm_sync_status = "retrying"
        lead.crm_sync_error = error
        lead.crm_next_retry_at = datetime.now(timezone.utc) + timedelta(seconds=delay)
        logger.info("CRM sync retry scheduled for lead %s in %ds", str(lead.id)[:8], delay)
    else:
        lead.crm_sync_status = "failed"
        lead.crm_sync_error = f"Max retries ({max_retries}) exhausted: {error}"
        lead.crm_next_retry_at = None

        from jobflow.utils.alerting import send_alert, AlertType
        await send_alert(
            AlertType.CRM_SYNC_FAILED,
            f"CRM sync permanently failed for lead {str(lead.id)[:8]} after {max_retries} attempts: {error}",
            extra={"lead_id": str(lead.id)[:8], "company_id": str(lead.company_id)[:8]},
        )

    db.add(EventLog(
        lead_id=lead.id,
        company_id=lead.company_id,
        action="crm_sync_failed",
        status="failure",
        source=SYNC_SOURCE_UI,
        message=f"CRM sync attempt {attempts} failed",
        error_message=error,
        data={"attempt": attempts, "crm_sync_status": lead.crm_sync_status},
    ))


async def _contact_owner(db: AsyncSession, lead: Lead, contact_id: str) -> Optional[uuid.UUID]:
    """Id of another lead in the same company already linked to this GHL contact."""
    result = await db.execute(
        select(Lead.id)
        .where(
            Lead.company_id == lead.company_id,
            Lead.external_contact_id == contact_id,
            Lead.id != lead.id,
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def record_duplicate_contact(
    db: AsyncSession, lead: Lead, contact_id: str, owner_id: uuid.UUID,
) -> None:
    """
    GHL deduped this lead onto a contact another lead already owns.
    Retrying would hit the same contact, so the lead is failed for manual merge.
    """
    error = f"GHL contact {contact_id} already belongs to lead {str(owner_id)[:8]}"
    lead.crm_sync_status = "failed"
    lead.crm_sync_error = error
    lead.crm_next_retry_at = None

    logger.error(
        "Duplicate GHL contact for lead %s: %s",
        str(lead.id)[:8], error,
        extra={"lead_id": str(lead.id), "company_id": str(lead.company_id)},
    )

    from jobflow.utils.alerting import send_alert, AlertType
    await send_alert(
        AlertType.CRM_SYNC_FAILED,
        f"Lead {str(lead.id)[:8]} needs a manual merge: {error}",
        extra={"lead_id": str(lead.id)[:8], "company_id": str(lead.company_id)[:8]},
    )

    db.add(EventLog(
        lead_id=lead.id,
        company_id=lead.company_id,
        action="crm_sync_duplicate_contact",
        status="failure",
        source=SYNC_SOURCE_UI,
        message="GHL contact already linked to another lead",
        error_message=error,
        data={"contact_id": contact_id, "owner_lead_id": str(owner_id)},
    ))


async def _commit_lead(db: AsyncSession, lead_id: uuid.UUID) -> None:
    """
    Commit one lead's sync bookkeeping. A rejected write is rolled back on its
    own and recorded as a sync failure so it cannot poison other leads.
    """
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        lead = await db.get(Lead, lead_id)
        if lead is None:
            return
        await record_sync_failure(db, lead, f"Lead write rejected: {e.orig}")
        await db.commit()


# --- Background loop ---

async def run_crm_sync():
    """Main loop — poll for leads whose CRM push is due."""
    poll_seconds = get_settings().crm_sync_poll_seconds
    logger.info("CRM sync worker started (poll every %ds)", poll_seconds)

    while True:
        try:
            await sync_due_leads()
        except Exception as e:
            logger.error("CRM sync error: %s", str(e), exc_info=True)

        await _heartbeat()
        await asyncio.sleep(poll_seconds)


async def sync_due_leads(now: Optional[datetime] = None) -> int:
    """Retry due leads and sweep stale pending UI writes. Returns the number attempted."""
    now = now or datetime.now(timezone.utc)

    async with async_session_factory() as db:
        result = await db.execute(
            select(Lead)
            .where(or_(
                and_(
                    Lead.crm_sync_status == "retrying",
                    Lead.crm_next_retry_at <= now,
                ),
                and_(
                    Lead.crm_sync_status == "pending",
                    Lead.sync_source == SYNC_SOURCE_UI,
                    Lead.updated_at <= now - STALE_PENDING_AFTER,
                ),
            ))
            .order_by(Lead.updated_at)
            .limit(RETRY_BATCH_SIZE)
        )
        lead_ids = [lead.id for lead in result.scalars().all()]

        if not lead_ids:
            return 0

        logger.info("Syncing %d leads to CRM", len(lead_ids))

        # Each lead commits on its own
        for lead_id in lead_ids:
            lead = await db.get(Lead, lead_id)
            if lead is None:
                continue
            company = await db.get(Company, lead.company_id)
            if company is None:
                lead.crm_sync_status = "failed"
                lead.crm_sync_error = "Company not found"
            else:
                try:
                    await sync_lead(db, lead, company, force_tag=True)
                except CRMSyncError as e:
                    await record_sync_failure(db, lead, str(e))
            await _commit_lead(db, lead_id)

        return len(lead_ids)
