"""
Sales pipeline state machine.

    lead ──► appointment_set ──► sold ──► complete
                   │              ▲
                   └─► not_sold ──┘

Pure data-in/data-out: plan_transition() inspects a lead snapshot and a
request and returns the field assignments to persist, or a structured error
the UI can render (which fields are missing, which move was illegal).
Persisting the assignments under an expected-status guard is the caller's job.
"""
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Any, Optional, Union

from jobflow.errors import ErrorKind
from jobflow.utils.dates import format_display_date, format_display_time


class LeadStatus(str, Enum):
    LEAD = "lead"
    APPOINTMENT_SET = "appointment_set"
    SOLD = "sold"
    NOT_SOLD = "not_sold"
    COMPLETE = "complete"


TRANSITIONS: dict[LeadStatus, tuple[LeadStatus, ...]] = {
    LeadStatus.LEAD: (LeadStatus.APPOINTMENT_SET,),
    LeadStatus.APPOINTMENT_SET: (LeadStatus.SOLD, LeadStatus.NOT_SOLD),
    LeadStatus.NOT_SOLD: (LeadStatus.SOLD,),
    LeadStatus.SOLD: (LeadStatus.COMPLETE,),
    LeadStatus.COMPLETE: (),
}

# Install scheduling is an ordinary edit once the job is sold
INSTALL_EDITABLE_STATUSES = (LeadStatus.SOLD, LeadStatus.COMPLETE)


def parse_status(value: Union[str, LeadStatus, None]) -> Optional[LeadStatus]:
    """"Appointment Set", "APPOINTMENT_SET", "appointment-set" → LeadStatus.APPOINTMENT_SET."""
    if isinstance(value, LeadStatus):
        return value
    if not value:
        return None
    key = "_".join(str(value).strip().lower().replace("-", " ").split())
    try:
        return LeadStatus(key)
    except ValueError:
        return None


@dataclass
class PipelineError:
    kind: ErrorKind
    message: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    missing_fields: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "missing_fields": list(self.missing_fields),
        }


@dataclass
class TransitionResult:
    ok: bool
    assignments: dict[str, Any] = field(default_factory=dict)
    error: Optional[PipelineError] = None

    @classmethod
    def success(cls, assignments: Optional[dict] = None) -> "TransitionResult":
        return cls(ok=True, assignments=assignments or {})

    @classmethod
    def failure(cls, kind: ErrorKind, message: str, **details) -> "TransitionResult":
        return cls(ok=False, error=PipelineError(kind=kind, message=message, **details))


@dataclass
class TransitionRequest:
    to_status: Union[str, LeadStatus]
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    not_sold_reason: Optional[str] = None


def allowed_transitions(status: Union[str, LeadStatus]) -> list[str]:
    current = parse_status(status)
    if current is None:
        return []
    return [s.value for s in TRANSITIONS[current]]


def plan_transition(lead: Any, request: TransitionRequest) -> TransitionResult:
    """
    Validate a status change against the lead's current state.

    `lead` only needs status, appointment_date and appointment_time attributes.
    A same-status request is an allowed no-op with no assignments.
    """
    current = parse_status(lead.status)
    target = parse_status(request.to_status)
    from_value = current.value if current else str(lead.status)

    if target is None:
        return TransitionResult.failure(
            ErrorKind.INVALID_TRANSITION,
            f"Unknown status '{request.to_status}'",
            from_status=from_value,
            to_status=str(request.to_status),
        )

    if current == target:
        return TransitionResult.success()

    if current is None or target not in TRANSITIONS[current]:
        return TransitionResult.failure(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot move a lead from {from_value} to {target.value}",
            from_status=from_value,
            to_status=target.value,
        )

    assignments: dict[str, Any] = {"status": target.value}

    if target == LeadStatus.APPOINTMENT_SET:
        appt_date = request.appointment_date or lead.appointment_date
        appt_time = request.appointment_time or lead.appointment_time
        missing = []
        if not appt_date:
            missing.append("appointment_date")
        if not appt_time:
            missing.append("appointment_time")
        if missing:
            return TransitionResult.failure(
                ErrorKind.MISSING_APPOINTMENT,
                "An appointment date and time are required to set an appointment",
                from_status=from_value,
                to_status=target.value,
                missing_fields=missing,
            )
        if request.appointment_date:
            assignments["appointment_date"] = request.appointment_date
        if request.appointment_time:
            assignments["appointment_time"] = request.appointment_time

    elif target == LeadStatus.NOT_SOLD:
        reason = (request.not_sold_reason or "").strip()
        if not reason:
            return TransitionResult.failure(
                ErrorKind.MISSING_REASON,
                "A reason is required to mark a lead not sold",
                from_status=from_value,
                to_status=target.value,
                missing_fields=["not_sold_reason"],
            )
        assignments["not_sold_reason"] = reason

    else:
        assignments["not_sold_reason"] = None

    return TransitionResult.success(assignments)


def plan_install_edit(
    status: Union[str, LeadStatus],
    install_date: Optional[date],
    install_tentative: Optional[bool],
) -> TransitionResult:
    """
    Validate an install schedule edit against the (post-transition) status.
    Clearing the install date is always allowed and clears the tentative flag.
    """
    current = parse_status(status)

    if install_date is None:
        if install_tentative:
            return TransitionResult.failure(
                ErrorKind.INSTALL_NOT_ALLOWED,
                "A tentative install needs an install date",
                from_status=current.value if current else None,
                missing_fields=["install_date"],
            )
        return TransitionResult.success({"install_date": None, "install_tentative": False})

    if current not in INSTALL_EDITABLE_STATUSES:
        return TransitionResult.failure(
            ErrorKind.INSTALL_NOT_ALLOWED,
            "Install dates can only be scheduled once a lead is sold",
            from_status=current.value if current else str(status),
        )

    assignments: dict[str, Any] = {"install_date": install_date}
    if install_tentative is not None:
        assignments["install_tentative"] = bool(install_tentative)
    return TransitionResult.success(assignments)


def status_label(lead: Any) -> str:
    """Status-bar text shown on lead cards."""
    status = parse_status(lead.status)

    if status == LeadStatus.APPOINTMENT_SET:
        day = format_display_date(lead.appointment_date)
        clock = format_display_time(lead.appointment_time)
        if day or clock:
            return f"Appointment: {day} {clock}".strip()
        return "Appointment Set"

    if status == LeadStatus.SOLD:
        if lead.install_date:
            day = format_display_date(lead.install_date)
            return f"Install {day} (Tentative)" if lead.install_tentative else f"Install {day}"
        return "Sold"

    if status == LeadStatus.NOT_SOLD:
        return "Not Sold"
    if status == LeadStatus.COMPLETE:
        return "Completed"
    return "Lead"
