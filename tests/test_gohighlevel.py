"""
Tests for jobflow/integrations/gohighlevel.py — GoHighLevel API v2 client.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from jobflow.integrations.gohighlevel import GoHighLevelCRM


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _response(json_data=None, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.content = b"{}" if json_data is not None else b""
    response.json.return_value = json_data or {}
    if status_code >= 400:
        request = httpx.Request("DELETE", "https://services.leadconnectorhq.com/x")
        error_response = httpx.Response(status_code, request=request)
        response.raise_for_status.side_effect = httpx.HTTPStatusError(
            "error", request=request, response=error_response,
        )
    return response


@pytest.fixture
def http_client():
    """Patch httpx.AsyncClient used inside the GHL integration."""
    client = AsyncMock()
    with patch("jobflow.integrations.gohighlevel.httpx.AsyncClient") as mock_cls:
        mock_cls.return_value.__aenter__ = AsyncMock(return_value=client)
        mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        yield client


@pytest.fixture
def crm():
    return GoHighLevelCRM(api_key="pit-test-key", location_id="loc_123")


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------

class TestContacts:
    async def test_upsert_contact(self, crm, http_client):
        http_client.request.return_value = _response({"contact": {"id": "c_1"}})
        result = await crm.upsert_contact({"firstName": "Jane"})

        assert result == {"contact_id": "c_1", "success": True, "error": None}
        method, url = http_client.request.call_args.args
        assert method == "POST"
        assert url.endswith("/contacts/upsert")
        kwargs = http_client.request.call_args.kwargs
        assert kwargs["json"] == {"locationId": "loc_123", "firstName": "Jane"}
        assert kwargs["headers"]["Authorization"] == "Bearer pit-test-key"
        assert kwargs["headers"]["Version"] == "2021-07-28"

    async def test_upsert_without_id(self, crm, http_client):
        http_client.request.return_value = _response({"contact": {}})
        result = await crm.upsert_contact({})
        assert result["success"] is False
        assert result["contact_id"] is None

    async def test_update_contact_error(self, crm, http_client):
        http_client.request.side_effect = httpx.ConnectTimeout("timed out")
        result = await crm.update_contact("c_1", {"city": "Austin"})
        assert result["success"] is False
        assert "timed out" in result["error"]

    async def test_add_tag(self, crm, http_client):
        http_client.request.return_value = _response({"tags": ["status - sold"]})
        result = await crm.add_tag("c_1", "status - sold")
        assert result["success"] is True
        assert http_client.request.call_args.args[1].endswith("/contacts/c_1/tags")
        assert http_client.request.call_args.kwargs["json"] == {"tags": ["status - sold"]}


# ---------------------------------------------------------------------------
# Calendar
# ---------------------------------------------------------------------------

class TestCalendar:
    async def test_create_event(self, crm, http_client):
        http_client.request.return_value = _response({"id": "ev_1"})
        result = await crm.create_calendar_event({"calendarId": "cal_appt"})
        assert result["event_id"] == "ev_1"
        assert http_client.request.call_args.kwargs["json"]["locationId"] == "loc_123"

    async def test_update_event(self, crm, http_client):
        http_client.request.return_value = _response()
        result = await crm.update_calendar_event("ev_1", {"title": "x"})
        assert result == {"event_id": "ev_1", "success": True, "error": None}
        assert http_client.request.call_args.args == ("PUT", "https://services.leadconnectorhq.com/calendars/events/appointments/ev_1")

    async def test_delete_event(self, crm, http_client):
        http_client.request.return_value = _response()
        result = await crm.delete_calendar_event("ev_1")
        assert result["success"] is True
        assert http_client.request.call_args.args[0] == "DELETE"

    async def test_delete_missing_event_counts_as_success(self, crm, http_client):
        http_client.request.return_value = _response(status_code=404)
        result = await crm.delete_calendar_event("ev_gone")
        assert result["success"] is True

    async def test_delete_server_error(self, crm, http_client):
        http_client.request.return_value = _response(status_code=500)
        result = await crm.delete_calendar_event("ev_1")
        assert result["success"] is False
        assert result["event_id"] == "ev_1"
