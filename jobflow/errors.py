"""
Error taxonomy for lead reconciliation and the sales pipeline.

Webhook-path failures are raised as exceptions and mapped to HTTP status
codes by the API layer. Pipeline failures are returned as structured
results so the UI can prompt for missing data.
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MISSING_TENANT_SCOPE = "MissingTenantScope"
    UNKNOWN_COMPANY = "UnknownCompany"
    INVALID_TRANSITION = "InvalidTransition"
    MISSING_APPOINTMENT = "MissingAppointment"
    MISSING_REASON = "MissingReason"
    INSTALL_NOT_ALLOWED = "InstallNotAllowed"
    LEAD_NOT_FOUND = "LeadNotFound"
    VALIDATION_FAILED = "ValidationFailed"


class LeadCoreError(Exception):
    """Base error carrying an ErrorKind and optional context."""

    kind: ErrorKind = ErrorKind.VALIDATION_FAILED

    def __init__(self, message: str, kind: Optional[ErrorKind] = None, **context):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.context = context

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "message": self.message, **self.context}


class MissingTenantScopeError(LeadCoreError):
    """No company key could be resolved from a webhook payload."""
    kind = ErrorKind.MISSING_TENANT_SCOPE


class UnknownCompanyError(LeadCoreError):
    """The resolved tenant scope matches no known company."""
    kind = ErrorKind.UNKNOWN_COMPANY


class LeadNotFoundError(LeadCoreError):
    kind = ErrorKind.LEAD_NOT_FOUND


class StatusConflictError(LeadCoreError):
    """
    Raised by the store when an update's expected status no longer matches
    the row. Callers translate it into an InvalidTransition result.
    """
    kind = ErrorKind.INVALID_TRANSITION

    def __init__(self, lead_id: str, expected: str, actual: str):
        super().__init__(
            f"Lead {lead_id[:8]} status is {actual}, expected {expected}",
            expected_status=expected,
            actual_status=actual,
        )
        self.expected = expected
        self.actual = actual
