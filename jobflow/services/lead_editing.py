"""
Lead editing — the UI write path.

Every edit runs in one transaction: fresh locked read, pipeline validation,
field merge, write-once compare-and-set, persist under an expected-status
guard, audit, commit, then sync dispatch. Validation problems come back as
a structured EditResult rather than an exception so the UI can prompt for
the missing data.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.errors import ErrorKind, LeadNotFoundError, StatusConflictError
from jobflow.models.company import Company
from jobflow.models.event_log import EventLog
from jobflow.models.lead import Lead, SYNC_SOURCE_UI
from jobflow.schemas.lead_requests import LeadCreateRequest, LeadUpdateRequest
from jobflow.services.lead_store import FieldAssignment, LeadStore, is_blank
from jobflow.services.merge_policy import WRITE_ONCE_FIELDS
from jobflow.services.pipeline import (
    LeadStatus,
    PipelineError,
    TransitionRequest,
    plan_install_edit,
    plan_transition,
)
from jobflow.services.sync_dispatcher import SyncDispatcher, SyncNotification, get_sync_dispatcher
from jobflow.utils.phone import canonical_phone

logger = logging.getLogger(__name__)

# Last-writer-wins fields editable from the UI
EDITABLE_FIELDS = (
    "name",
    "phone",
    "email",
    "address",
    "city",
    "state",
    "zip",
    "buyer_type",
    "company_name",
    "project_type",
    "notes",
    "contract_price",
    "appointment_date",
    "appointment_time",
)

REQUIRED_FIELDS = ("name", "phone")


@dataclass
class EditResult:
    ok: bool
    lead: Optional[Lead] = None
    error: Optional[PipelineError] = None
    changed_fields: list[str] = field(default_factory=list)
    skipped_write_once: list[str] = field(default_factory=list)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details) -> "EditResult":
        return cls(ok=False, error=PipelineError(kind=kind, message=message, **details))


def _clean_value(name: str, value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        if name == "phone":
            return canonical_phone(value)
        if name == "email":
            return value.lower() or None
        if name not in REQUIRED_FIELDS and not value:
            return None
    return value


def _missing_required(values: dict) -> list[str]:
    return [name for name in REQUIRED_FIELDS if name in values and not values[name]]


async def create_lead_from_ui(
    db: AsyncSession,
    company: Company,
    request: LeadCreateRequest,
    now: Optional[datetime] = None,
    dispatcher: Optional[SyncDispatcher] = None,
) -> EditResult:
    """Create a lead entered by staff. Name and phone are required."""
    values = {name: _clean_value(name, value) for name, value in request.model_dump().items()}
    missing = _missing_required(values)
    if missing:
        return EditResult.failure(
            ErrorKind.VALIDATION_FAILED,
            "Name and phone are required",
            missing_fields=missing,
        )

    now = now or datetime.now(timezone.utc)
    store = LeadStore(db)
    lead = await store.create_lead({
        **values,
        "company_id": company.id,
        "status": LeadStatus.LEAD.value,
        "sync_source": SYNC_SOURCE_UI,
        "created_at": now,
        "updated_at": now,
    })

    changed = [name for name, value in values.items() if value not in (None, "")]
    db.add(EventLog(
        lead_id=lead.id,
        company_id=company.id,
        action="lead_created",
        source=SYNC_SOURCE_UI,
        message="Lead created from dashboard",
        data={"changed_fields": changed},
    ))
    await db.commit()

    _dispatch(dispatcher, lead, "created", changed, None)
    return EditResult(ok=True, lead=lead, changed_fields=changed)


async def edit_lead(
    db: AsyncSession,
    company: Company,
    lead_id: uuid.UUID,
    request: LeadUpdateRequest,
    now: Optional[datetime] = None,
    dispatcher: Optional[SyncDispatcher] = None,
) -> EditResult:
    """
    Apply a partial edit (and optional status change) to one lead.

    Only fields present in the request are touched. Raises LeadNotFoundError
    when the lead does not exist in this company.
    """
    provided = request.model_dump(exclude_unset=True)
    store = LeadStore(db)

    lead = await store.lock_lead(lead_id)
    if lead is None or lead.company_id != company.id:
        raise LeadNotFoundError(f"Lead {str(lead_id)[:8]} not found", lead_id=str(lead_id))

    previous_status = lead.status
    assignments: dict[str, Any] = {}

    # 1. Pipeline transition
    requested_status = provided.get("status")
    if requested_status is not None:
        transition = plan_transition(lead, TransitionRequest(
            to_status=requested_status,
            appointment_date=provided.get("appointment_date"),
            appointment_time=provided.get("appointment_time"),
            not_sold_reason=provided.get("not_sold_reason"),
        ))
        if not transition.ok:
            logger.info(
                "Lead %s edit rejected: %s",
                str(lead.id)[:8], transition.error.message,
                extra={"lead_id": str(lead.id), "error_kind": transition.error.kind.value},
            )
            return EditResult(ok=False, lead=lead, error=transition.error)
        assignments.update(transition.assignments)

    target_status = assignments.get("status", previous_status)

    # 2. Ordinary field edits
    for name in EDITABLE_FIELDS:
        if name in provided and name not in assignments:
            assignments[name] = _clean_value(name, provided[name])
    missing = _missing_required(assignments)
    if missing:
        return EditResult.failure(
            ErrorKind.VALIDATION_FAILED,
            "Name and phone cannot be blank",
            from_status=previous_status,
            missing_fields=missing,
        )

    if "not_sold_reason" in provided and "not_sold_reason" not in assignments:
        if target_status == LeadStatus.NOT_SOLD.value:
            reason = (provided["not_sold_reason"] or "").strip()
            if not reason:
                return EditResult.failure(
                    ErrorKind.MISSING_REASON,
                    "A not-sold lead must keep a reason",
                    from_status=previous_status,
                    to_status=target_status,
                    missing_fields=["not_sold_reason"],
                )
            assignments["not_sold_reason"] = reason

    # 3. Install schedule
    if "install_date" in provided or "install_tentative" in provided:
        install_date = provided["install_date"] if "install_date" in provided else lead.install_date
        install = plan_install_edit(target_status, install_date, provided.get("install_tentative"))
        if not install.ok:
            return EditResult(ok=False, lead=lead, error=install.error)
        assignments.update(install.assignments)

    # 4. Provenance (write-once)
    write_once = [
        FieldAssignment(name, _clean_value(name, provided[name]))
        for name in WRITE_ONCE_FIELDS if name in provided
    ]
    already_set = [
        a.field for a in write_once
        if a.value and not is_blank(getattr(lead, a.field)) and getattr(lead, a.field) != a.value
    ]

    changed = [
        name for name, value in assignments.items()
        if getattr(lead, name) != value
    ] + [a.field for a in write_once if a.value and is_blank(getattr(lead, a.field))]

    now = now or datetime.now(timezone.utc)
    assignments.update(sync_source=SYNC_SOURCE_UI, crm_sync_status="pending", updated_at=now)

    try:
        outcome = await store.update_lead(
            lead.id,
            [FieldAssignment(name, value) for name, value in assignments.items()],
            expected_status=previous_status,
            write_once=write_once,
        )
    except StatusConflictError as e:
        await db.rollback()
        logger.warning(
            "Lead %s changed status concurrently (%s → %s)",
            str(lead_id)[:8], e.expected, e.actual,
            extra={"lead_id": str(lead_id), "error_kind": ErrorKind.INVALID_TRANSITION.value},
        )
        return EditResult.failure(
            ErrorKind.INVALID_TRANSITION,
            f"Lead status changed to {e.actual} while editing",
            from_status=e.actual,
            to_status=target_status,
        )

    lead = outcome.lead
    skipped = already_set + [f for f in outcome.skipped_write_once if f not in already_set]
    changed = [name for name in changed if name not in outcome.skipped_write_once]

    db.add(EventLog(
        lead_id=lead.id,
        company_id=company.id,
        action="lead_updated",
        source=SYNC_SOURCE_UI,
        message="Lead edited from dashboard",
        data={"changed_fields": changed},
    ))
    if lead.status != previous_status:
        db.add(EventLog(
            lead_id=lead.id,
            company_id=company.id,
            action="status_changed",
            source=SYNC_SOURCE_UI,
            message=f"Status {previous_status} → {lead.status}",
            data={"from": previous_status, "to": lead.status},
        ))
    if skipped:
        db.add(EventLog(
            lead_id=lead.id,
            company_id=company.id,
            action="write_once_skipped",
            status="skipped",
            source=SYNC_SOURCE_UI,
            message="Provenance edit ignored, lead already has a value",
            data={"fields": skipped},
        ))
    await db.commit()

    logger.info(
        "Lead %s edited (status %s → %s, changed %s)",
        str(lead.id)[:8], previous_status, lead.status, ",".join(changed) or "-",
        extra={"lead_id": str(lead.id), "company_id": str(company.id), "source": SYNC_SOURCE_UI},
    )

    _dispatch(dispatcher, lead, "updated", changed, previous_status)
    return EditResult(ok=True, lead=lead, changed_fields=changed, skipped_write_once=skipped)


def _dispatch(
    dispatcher: Optional[SyncDispatcher],
    lead: Lead,
    action: str,
    changed: list[str],
    previous_status: Optional[str],
) -> None:
    (dispatcher or get_sync_dispatcher()).dispatch(SyncNotification(
        lead_id=lead.id,
        company_id=lead.company_id,
        change_summary={
            "source": SYNC_SOURCE_UI,
            "action": action,
            "changed_fields": changed,
            "previous_status": previous_status,
            "status": lead.status,
        },
    ))
