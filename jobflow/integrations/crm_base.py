"""
Abstract CRM interface - the outbound side of lead sync.
CRITICAL: CRM calls NEVER run inside a lead write transaction.
They happen after commit, from the sync dispatcher or the crm_sync worker.
"""
from abc import ABC, abstractmethod
from typing import Optional


class CRMBase(ABC):
    """Abstract base class for CRM integrations."""

    @abstractmethod
    async def upsert_contact(self, payload: dict) -> dict:
        """
        Create or update a contact (matched by phone/email on the CRM side).
        Returns: {"contact_id": str, "success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def update_contact(self, contact_id: str, payload: dict) -> dict:
        """
        Update fields on an existing contact.
        Returns: {"contact_id": str, "success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def add_tag(self, contact_id: str, tag: str) -> dict:
        """
        Add one tag to a contact (add-only; CRM automations remove stale tags).
        Returns: {"success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def create_calendar_event(self, payload: dict) -> dict:
        """
        Create an appointment on a CRM calendar.
        Returns: {"event_id": str, "success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def update_calendar_event(self, event_id: str, payload: dict) -> dict:
        """
        Returns: {"event_id": str, "success": bool, "error": str|None}
        """
        ...

    @abstractmethod
    async def delete_calendar_event(self, event_id: str) -> dict:
        """
        Returns: {"event_id": Optional[str], "success": bool, "error": str|None}
        """
        ...


def result(success: bool, error: Optional[str] = None, **ids) -> dict:
    """Uniform integration return value."""
    return {**ids, "success": success, "error": error}
