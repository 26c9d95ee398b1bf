"""
Lead → GoHighLevel payload mapping.

Keeps tag names, custom field keys and calendar titles in one place so they
do not drift between the sync dispatcher and the retry worker.
"""
import logging
from datetime import datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from jobflow.models.company import Company
from jobflow.models.lead import Lead
from jobflow.services.pipeline import LeadStatus, parse_status, status_label
from jobflow.utils.dates import normalize_time_24h
from jobflow.utils.phone import to_e164

logger = logging.getLogger(__name__)

# Add-only: GHL automations remove the previous status tag
STATUS_TAGS = {
    LeadStatus.LEAD: "status - lead",
    LeadStatus.APPOINTMENT_SET: "status - appointment set",
    LeadStatus.SOLD: "status - sold",
    LeadStatus.NOT_SOLD: "status - not sold",
    LeadStatus.COMPLETE: "status - complete",
}

# Must match the custom field keys configured in each GHL location
CUSTOM_FIELD_KEYS = {
    "id": "jf_lead_id",
    "company_id": "jf_company_id",
    "lead_source": "jf_lead_source",
    "referral_source": "jf_referral_source",
    "status": "jf_lead_status",
    "notes": "jf_notes",
    "not_sold_reason": "jf_not_sold_reason",
    "contract_price": "jf_contract_price",
    "buyer_type": "buyer_type",
    "company_name": "jf_company_name",
    "project_type": "jf_project_type",
    "install_tentative": "install_tentative",
}

APPOINTMENT_DURATION = timedelta(hours=1)
INSTALL_START = time(8, 0)
INSTALL_DURATION = timedelta(hours=8)
DEFAULT_TIMEZONE = "America/Chicago"


class CalendarChange:
    NONE = "none"
    NEW = "new"
    CHANGED = "changed"
    UNCHANGED = "unchanged"
    CANCELLED = "cancelled"


def status_tag(status: Optional[str]) -> Optional[str]:
    parsed = parse_status(status)
    return STATUS_TAGS.get(parsed) if parsed else None


def split_name(name: Optional[str]) -> tuple[str, str]:
    """"Jane Q Doe" → ("Jane", "Q Doe")."""
    parts = (name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


def _custom_field_value(lead: Lead, attr: str):
    value = getattr(lead, attr, None)
    if attr in ("id", "company_id"):
        return str(value) if value else None
    if attr == "status":
        return status_label(lead) if lead.status else None
    if attr == "contract_price":
        return float(value) if value is not None else None
    if attr == "install_tentative":
        return ("Yes" if value else "No") if lead.install_date else None
    return value


def build_custom_fields(lead: Lead) -> list[dict]:
    fields = []
    for attr, key in CUSTOM_FIELD_KEYS.items():
        value = _custom_field_value(lead, attr)
        if value is None or value == "":
            continue
        fields.append({"key": key, "field_value": value})
    return fields


def build_contact_payload(lead: Lead, tags: Optional[list[str]] = None) -> dict:
    """Contact upsert body. Empty values are omitted so GHL keeps what it has."""
    first_name, last_name = split_name(lead.name)
    payload = {"country": "US"}
    optional = {
        "firstName": first_name,
        "lastName": last_name,
        "email": lead.email,
        "phone": to_e164(lead.phone),
        "address1": lead.address,
        "city": lead.city,
        "state": lead.state,
        "postalCode": lead.zip,
    }
    payload.update({key: value for key, value in optional.items() if value})

    custom_fields = build_custom_fields(lead)
    if custom_fields:
        payload["customFields"] = custom_fields
    if tags:
        payload["tags"] = list(tags)
    return payload


# --- Calendar ---

def appointment_slot(lead: Lead) -> Optional[str]:
    """"YYYY-MM-DD HH:MM" for a fully scheduled appointment, else None."""
    if not lead.appointment_date:
        return None
    clock = normalize_time_24h(lead.appointment_time)
    if not clock:
        return None
    return f"{lead.appointment_date.isoformat()} {clock}"


def detect_appointment_change(lead: Lead) -> str:
    slot = appointment_slot(lead)
    if not slot:
        return CalendarChange.CANCELLED if lead.appointment_event_id else CalendarChange.NONE
    if not lead.appointment_event_id:
        return CalendarChange.NEW
    if slot != lead.synced_appointment_at:
        return CalendarChange.CHANGED
    return CalendarChange.UNCHANGED


def detect_install_change(lead: Lead) -> str:
    """Only confirmed installs are scheduled; a tentative install cancels its event."""
    confirmed = bool(lead.install_date) and not lead.install_tentative
    if not confirmed:
        return CalendarChange.CANCELLED if lead.install_event_id else CalendarChange.NONE
    if not lead.install_event_id:
        return CalendarChange.NEW
    if lead.install_date != lead.synced_install_date:
        return CalendarChange.CHANGED
    return CalendarChange.UNCHANGED


def company_zone(company: Company) -> ZoneInfo:
    try:
        return ZoneInfo(company.timezone_name or DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(
            "Unknown timezone '%s' for company %s, using %s",
            company.timezone_name, str(company.id)[:8], DEFAULT_TIMEZONE,
        )
        return ZoneInfo(DEFAULT_TIMEZONE)


def _event_address(lead: Lead) -> Optional[str]:
    parts = [p for p in (lead.address, lead.city, lead.state, lead.zip) if p and p.strip()]
    return ", ".join(parts) or None


def _event_payload(lead: Lead, start: datetime, end: datetime, title: str) -> dict:
    payload = {
        "title": title,
        "startTime": start.isoformat(),
        "endTime": end.isoformat(),
    }
    address = _event_address(lead)
    if address:
        payload["address"] = address
    return payload


def build_appointment_event(lead: Lead, company: Company) -> Optional[dict]:
    """One-hour sales appointment in the company's timezone."""
    slot = appointment_slot(lead)
    if not slot or not company.ghl_appt_calendar:
        return None
    hour, minute = (int(p) for p in slot[11:].split(":"))
    start = datetime.combine(lead.appointment_date, time(hour, minute), tzinfo=company_zone(company))
    payload = _event_payload(
        lead, start, start + APPOINTMENT_DURATION, f"{lead.name or 'Lead'} - Appointment",
    )
    payload["calendarId"] = company.ghl_appt_calendar
    return payload


def build_install_event(lead: Lead, company: Company) -> Optional[dict]:
    """Full-day install block starting 08:00 local."""
    if not lead.install_date or lead.install_tentative or not company.ghl_install_calendar:
        return None
    start = datetime.combine(lead.install_date, INSTALL_START, tzinfo=company_zone(company))
    payload = _event_payload(
        lead, start, start + INSTALL_DURATION, f"{lead.name or 'Lead'} - Install",
    )
    payload["calendarId"] = company.ghl_install_calendar
    return payload
