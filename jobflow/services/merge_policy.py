"""
Field merge policy — decides the exact writes for an incoming contact.

- No existing lead: create with every contact field, status lead, sync_source EXTERNAL.
- Existing lead: contact fields are overwritten unconditionally (the CRM is the
  source of truth for them, blanks included); provenance fields are write-once
  and only planned while the stored value is empty.

Pure function of (existing lead, contact, now): replaying a payload plans the
same writes, so webhook redelivery is idempotent apart from timestamps.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, Optional

from jobflow.models.lead import Lead, SYNC_SOURCE_EXTERNAL
from jobflow.schemas.incoming_contact import IncomingContact
from jobflow.services.lead_store import FieldAssignment

ALWAYS_OVERWRITE_FIELDS = (
    "external_contact_id",
    "name",
    "phone",
    "email",
    "address",
    "city",
    "state",
    "zip",
    "project_type",
    "notes",
)

WRITE_ONCE_FIELDS = ("referral_source", "lead_source")

# Written on every merge; never reported as a content change
BOOKKEEPING_FIELDS = ("sync_source", "last_synced_at", "updated_at")


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


@dataclass
class MergePlan:
    action: Literal["create", "update"]
    create_fields: dict = field(default_factory=dict)
    assignments: list[FieldAssignment] = field(default_factory=list)
    write_once: list[FieldAssignment] = field(default_factory=list)

    def changed_fields(self, existing: Optional[Lead] = None) -> list[str]:
        """Names of content fields this plan actually changes."""
        if self.action == "create":
            return [
                name for name in ALWAYS_OVERWRITE_FIELDS + WRITE_ONCE_FIELDS
                if not _is_empty(self.create_fields.get(name))
            ]

        changed = []
        for assignment in self.assignments + self.write_once:
            if assignment.field in BOOKKEEPING_FIELDS:
                continue
            current = getattr(existing, assignment.field, None) if existing else None
            if _is_empty(current) and _is_empty(assignment.value):
                continue
            if current != assignment.value:
                changed.append(assignment.field)
        return changed


def plan_merge(existing: Optional[Lead], contact: IncomingContact, now: datetime) -> MergePlan:
    """Compute the writes that reconcile `existing` with `contact`."""
    if existing is None:
        fields = {name: getattr(contact, name) for name in ALWAYS_OVERWRITE_FIELDS}
        for name in WRITE_ONCE_FIELDS:
            fields[name] = getattr(contact, name)
        fields.update(
            status="lead",
            sync_source=SYNC_SOURCE_EXTERNAL,
            crm_sync_status="synced",
            created_at=now,
            updated_at=now,
            last_synced_at=now,
        )
        return MergePlan(action="create", create_fields=fields)

    assignments = [
        FieldAssignment(name, getattr(contact, name)) for name in ALWAYS_OVERWRITE_FIELDS
    ]
    assignments.extend([
        FieldAssignment("sync_source", SYNC_SOURCE_EXTERNAL),
        FieldAssignment("last_synced_at", now),
        FieldAssignment("updated_at", now),
    ])

    write_once = [
        FieldAssignment(name, getattr(contact, name))
        for name in WRITE_ONCE_FIELDS
        if _is_empty(getattr(existing, name)) and not _is_empty(getattr(contact, name))
    ]

    return MergePlan(action="update", assignments=assignments, write_once=write_once)


def skipped_write_once(existing: Lead, contact: IncomingContact) -> list[str]:
    """Write-once fields the contact carries a value for that the lead already holds."""
    return [
        name for name in WRITE_ONCE_FIELDS
        if not _is_empty(getattr(existing, name))
        and not _is_empty(getattr(contact, name))
        and getattr(existing, name) != getattr(contact, name)
    ]
