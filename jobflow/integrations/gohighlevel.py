"""
GoHighLevel CRM integration — REST API v2.

Auth: Bearer token via the location's API key.
Docs: https://highlevel.stoplight.io/docs/integrations
All calls have a 10-second timeout (GHL_TIMEOUT_SECONDS).
"""
import logging
from typing import Optional

import httpx

from jobflow.config import get_settings
from jobflow.integrations.crm_base import CRMBase, result

logger = logging.getLogger(__name__)


class GoHighLevelCRM(CRMBase):
    """GoHighLevel API v2 integration."""

    def __init__(self, api_key: str, location_id: str):
        settings = get_settings()
        self.api_key = api_key
        self.location_id = location_id
        self.base_url = settings.ghl_api_base_url.rstrip("/")
        self.timeout = settings.ghl_timeout_seconds
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Version": settings.ghl_api_version,
        }

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> dict:
        """Make an authenticated request to the GoHighLevel API."""
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.request(
                method,
                f"{self.base_url}{path}",
                headers=self._headers,
                json=json,
                params=params,
            )
            response.raise_for_status()
            if not response.content:
                return {}
            return response.json()

    async def upsert_contact(self, payload: dict) -> dict:
        """POST /contacts/upsert — GHL dedupes on phone/email within the location."""
        try:
            data = await self._request(
                "POST", "/contacts/upsert",
                json={"locationId": self.location_id, **payload},
            )
            contact = data.get("contact", data)
            contact_id = contact.get("id")
            if not contact_id:
                return result(False, "GHL upsert returned no contact id", contact_id=None)

            logger.info("GHL contact upserted: %s", contact_id)
            return result(True, contact_id=contact_id)
        except Exception as e:
            logger.error("GHL upsert_contact failed: %s", str(e))
            return result(False, str(e), contact_id=None)

    async def update_contact(self, contact_id: str, payload: dict) -> dict:
        try:
            await self._request("PUT", f"/contacts/{contact_id}", json=payload)
            return result(True, contact_id=contact_id)
        except Exception as e:
            logger.error("GHL update_contact failed for %s: %s", contact_id, str(e))
            return result(False, str(e), contact_id=contact_id)

    async def add_tag(self, contact_id: str, tag: str) -> dict:
        try:
            await self._request("POST", f"/contacts/{contact_id}/tags", json={"tags": [tag]})
            logger.info("GHL tag '%s' added to %s", tag, contact_id)
            return result(True)
        except Exception as e:
            logger.error("GHL add_tag failed for %s: %s", contact_id, str(e))
            return result(False, str(e))

    async def create_calendar_event(self, payload: dict) -> dict:
        try:
            data = await self._request(
                "POST", "/calendars/events/appointments",
                json={"locationId": self.location_id, **payload},
            )
            event = data.get("event", data)
            event_id = event.get("id")
            if not event_id:
                return result(False, "GHL calendar create returned no event id", event_id=None)
            logger.info("GHL calendar event created: %s", event_id)
            return result(True, event_id=event_id)
        except Exception as e:
            logger.error("GHL create_calendar_event failed: %s", str(e))
            return result(False, str(e), event_id=None)

    async def update_calendar_event(self, event_id: str, payload: dict) -> dict:
        try:
            await self._request("PUT", f"/calendars/events/appointments/{event_id}", json=payload)
            return result(True, event_id=event_id)
        except Exception as e:
            logger.error("GHL update_calendar_event failed for %s: %s", event_id, str(e))
            return result(False, str(e), event_id=event_id)

    async def delete_calendar_event(self, event_id: str) -> dict:
        try:
            await self._request("DELETE", f"/calendars/events/appointments/{event_id}")
            logger.info("GHL calendar event deleted: %s", event_id)
            return result(True, event_id=None)
        except httpx.HTTPStatusError as e:
            # Already gone on the GHL side
            if e.response.status_code == 404:
                return result(True, event_id=None)
            logger.error("GHL delete_calendar_event failed for %s: %s", event_id, str(e))
            return result(False, str(e), event_id=event_id)
        except Exception as e:
            logger.error("GHL delete_calendar_event failed for %s: %s", event_id, str(e))
            return result(False, str(e), event_id=event_id)
