"""
Tests for jobflow/workers/crm_sync.py — CRM push, calendar sync and retry worker.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select

from jobflow.models.event_log import EventLog
from jobflow.models.lead import Lead, SYNC_SOURCE_EXTERNAL, SYNC_SOURCE_UI
from jobflow.services.sync_dispatcher import SyncNotification
from jobflow.workers.crm_sync import (
    CRM_RETRY_DELAYS,
    CRMSyncError,
    get_crm_for_company,
    handle_sync_notification,
    record_sync_failure,
    sync_calendars,
    sync_due_leads,
    sync_lead,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_crm(**overrides):
    """Mock CRM where every call succeeds unless overridden."""
    crm = MagicMock()
    crm.upsert_contact = AsyncMock(return_value={"contact_id": "ghl_new", "success": True, "error": None})
    crm.update_contact = AsyncMock(return_value={"contact_id": "ghl_1", "success": True, "error": None})
    crm.add_tag = AsyncMock(return_value={"success": True, "error": None})
    crm.create_calendar_event = AsyncMock(return_value={"event_id": "ev_1", "success": True, "error": None})
    crm.update_calendar_event = AsyncMock(return_value={"event_id": "ev_1", "success": True, "error": None})
    crm.delete_calendar_event = AsyncMock(return_value={"event_id": None, "success": True, "error": None})
    for name, value in overrides.items():
        setattr(crm, name, value)
    return crm


async def _lead(db, company, **fields):
    defaults = dict(company_id=company.id, name="Jane Doe", phone="5551234567", status="lead")
    defaults.update(fields)
    lead = Lead(**defaults)
    db.add(lead)
    await db.commit()
    return lead


def _session_factory(db):
    @asynccontextmanager
    async def factory():
        yield db
    return factory


# ---------------------------------------------------------------------------
# sync_lead
# ---------------------------------------------------------------------------

class TestSyncLead:
    async def test_new_contact_upserted_with_tag(self, db, company):
        lead = await _lead(db, company)
        crm = _make_crm()
        await sync_lead(db, lead, company, crm=crm)

        payload = crm.upsert_contact.call_args.args[0]
        assert payload["tags"] == ["status - lead"]
        assert lead.external_contact_id == "ghl_new"
        assert lead.crm_sync_status == "synced"
        crm.add_tag.assert_not_called()

    async def test_status_change_adds_tag(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="sold")
        crm = _make_crm()
        await sync_lead(db, lead, company, previous_status="appointment_set", crm=crm)
        crm.update_contact.assert_awaited_once()
        crm.add_tag.assert_awaited_once_with("ghl_1", "status - sold")

    async def test_field_edit_does_not_retag(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="sold")
        crm = _make_crm()
        await sync_lead(db, lead, company, previous_status="sold", crm=crm)
        crm.add_tag.assert_not_called()

    async def test_failure_raises(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1")
        crm = _make_crm(update_contact=AsyncMock(return_value={"success": False, "error": "HTTP 502"}))
        with pytest.raises(CRMSyncError, match="HTTP 502"):
            await sync_lead(db, lead, company, crm=crm)

    async def test_company_without_crm_skipped(self, db, other_company):
        lead = await _lead(db, other_company)
        assert get_crm_for_company(other_company) is None
        await sync_lead(db, lead, other_company)
        assert lead.crm_sync_status == "skipped"

    async def test_success_logs_event(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1")
        await sync_lead(db, lead, company, crm=_make_crm())
        await db.commit()
        events = (await db.execute(
            select(EventLog).where(EventLog.action == "crm_sync_success")
        )).scalars().all()
        assert len(events) == 1


# ---------------------------------------------------------------------------
# Calendars
# ---------------------------------------------------------------------------

class TestSyncCalendars:
    async def test_creates_appointment_event(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="appointment_set",
                           appointment_date=date(2026, 3, 15), appointment_time="14:30")
        crm = _make_crm()
        assert await sync_calendars(crm, lead, company) == []

        payload = crm.create_calendar_event.call_args.args[0]
        assert payload["contactId"] == "ghl_1"
        assert payload["calendarId"] == "cal_appt"
        assert lead.appointment_event_id == "ev_1"
        assert lead.synced_appointment_at == "2026-03-15 14:30"

    async def test_reschedule_updates_event(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="appointment_set",
                           appointment_date=date(2026, 3, 16), appointment_time="09:00",
                           appointment_event_id="ev_1", synced_appointment_at="2026-03-15 14:30")
        crm = _make_crm()
        await sync_calendars(crm, lead, company)
        event_id, payload = crm.update_calendar_event.call_args.args
        assert event_id == "ev_1"
        assert "calendarId" not in payload
        assert lead.synced_appointment_at == "2026-03-16 09:00"

    async def test_tentative_install_cancels_event(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="sold",
                           install_date=date(2026, 4, 1), install_tentative=True,
                           install_event_id="ev_install", synced_install_date=date(2026, 4, 1))
        crm = _make_crm()
        await sync_calendars(crm, lead, company)
        crm.delete_calendar_event.assert_awaited_once_with("ev_install")
        assert lead.install_event_id is None
        assert lead.synced_install_date is None

    async def test_calendar_error_reported(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", install_date=date(2026, 4, 1))
        crm = _make_crm(create_calendar_event=AsyncMock(return_value={"success": False, "error": "bad slot"}))
        errors = await sync_calendars(crm, lead, company)
        assert errors == ["install create failed: bad slot"]


# ---------------------------------------------------------------------------
# Failures and retries
# ---------------------------------------------------------------------------

class TestRecordSyncFailure:
    async def test_schedules_retry(self, db, company):
        lead = await _lead(db, company)
        before = datetime.now(timezone.utc)
        await record_sync_failure(db, lead, "HTTP 502")

        assert lead.crm_sync_status == "retrying"
        assert lead.crm_sync_attempts == 1
        assert lead.crm_next_retry_at >= before + timedelta(seconds=CRM_RETRY_DELAYS[0])

    async def test_exhausted_alerts(self, db, company):
        lead = await _lead(db, company, crm_sync_attempts=4)
        with patch("jobflow.utils.alerting.send_alert", new_callable=AsyncMock) as mock_alert:
            await record_sync_failure(db, lead, "HTTP 502")

        assert lead.crm_sync_status == "failed"
        assert lead.crm_sync_error.startswith("Max retries (5) exhausted")
        assert lead.crm_next_retry_at is None
        mock_alert.assert_awaited_once()


# ---------------------------------------------------------------------------
# Dispatcher entry point
# ---------------------------------------------------------------------------

class TestHandleSyncNotification:
    async def test_external_writes_not_echoed(self):
        notification = SyncNotification(
            lead_id=uuid.uuid4(), company_id=uuid.uuid4(),
            change_summary={"source": SYNC_SOURCE_EXTERNAL},
        )
        with patch("jobflow.workers.crm_sync.async_session_factory") as mock_factory:
            await handle_sync_notification(notification)
        mock_factory.assert_not_called()

    async def test_ui_write_pushed(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1", status="appointment_set")
        notification = SyncNotification(
            lead_id=lead.id, company_id=company.id,
            change_summary={"source": SYNC_SOURCE_UI, "previous_status": "lead"},
        )
        crm = _make_crm()
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm):
            await handle_sync_notification(notification)

        crm.add_tag.assert_awaited_once_with("ghl_1", "status - appointment set")
        await db.refresh(lead)
        assert lead.crm_sync_status == "synced"

    async def test_failure_recorded(self, db, company):
        lead = await _lead(db, company, external_contact_id="ghl_1")
        notification = SyncNotification(
            lead_id=lead.id, company_id=company.id, change_summary={"source": SYNC_SOURCE_UI},
        )
        crm = _make_crm(update_contact=AsyncMock(return_value={"success": False, "error": "HTTP 500"}))
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm):
            await handle_sync_notification(notification)

        await db.refresh(lead)
        assert lead.crm_sync_status == "retrying"
        assert lead.crm_sync_error == "Contact update failed: HTTP 500"


# ---------------------------------------------------------------------------
# Background sweep
# ---------------------------------------------------------------------------

class TestSyncDueLeads:
    async def test_retries_due_and_stale_pending(self, db, company):
        now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
        due = await _lead(db, company, external_contact_id="ghl_1", crm_sync_status="retrying",
                          crm_next_retry_at=now - timedelta(minutes=1), updated_at=now - timedelta(hours=1))
        await _lead(db, company, phone="5550000001", crm_sync_status="retrying",
                    crm_next_retry_at=now + timedelta(minutes=10), updated_at=now - timedelta(hours=1))
        stale = await _lead(db, company, external_contact_id="ghl_2", phone="5550000002",
                            crm_sync_status="pending", sync_source=SYNC_SOURCE_UI,
                            updated_at=now - timedelta(minutes=30))
        await _lead(db, company, phone="5550000003", crm_sync_status="pending",
                    sync_source=SYNC_SOURCE_UI, updated_at=now - timedelta(minutes=1))

        crm = _make_crm()
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm):
            count = await sync_due_leads(now=now)

        assert count == 2
        await db.refresh(due)
        await db.refresh(stale)
        assert due.crm_sync_status == "synced"
        assert stale.crm_sync_status == "synced"
        assert crm.add_tag.await_count == 2

    async def test_nothing_due(self, db, company):
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)):
            assert await sync_due_leads() == 0


# ---------------------------------------------------------------------------
# Duplicate GHL contacts
# ---------------------------------------------------------------------------

class TestDuplicateContact:
    async def test_sync_lead_refuses_taken_contact_id(self, db, company):
        owner = await _lead(db, company, external_contact_id="ghl_dup")
        lead = await _lead(db, company, name="Jane D.")
        crm = _make_crm(upsert_contact=AsyncMock(return_value={"contact_id": "ghl_dup", "success": True, "error": None}))

        with patch("jobflow.utils.alerting.send_alert", new_callable=AsyncMock) as mock_alert:
            await sync_lead(db, lead, company, crm=crm)
        await db.commit()

        assert lead.external_contact_id is None
        assert lead.crm_sync_status == "failed"
        assert lead.crm_sync_error.startswith("GHL contact ghl_dup already belongs to lead")
        crm.create_calendar_event.assert_not_called()
        mock_alert.assert_awaited_once()
        await db.refresh(owner)
        assert owner.external_contact_id == "ghl_dup"

    async def test_notification_for_duplicate_is_failed(self, db, company):
        await _lead(db, company, external_contact_id="ghl_dup")
        lead = await _lead(db, company, name="Jane D.")
        notification = SyncNotification(
            lead_id=lead.id, company_id=company.id, change_summary={"source": SYNC_SOURCE_UI},
        )
        crm = _make_crm(upsert_contact=AsyncMock(return_value={"contact_id": "ghl_dup", "success": True, "error": None}))
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm), \
             patch("jobflow.utils.alerting.send_alert", new_callable=AsyncMock):
            await handle_sync_notification(notification)

        await db.refresh(lead)
        assert lead.crm_sync_status == "failed"
        actions = (await db.execute(
            select(EventLog.action).where(EventLog.lead_id == lead.id)
        )).scalars().all()
        assert actions == ["crm_sync_duplicate_contact"]

    async def test_duplicate_does_not_block_batch(self, db, company):
        """A lead deduped onto a taken contact fails alone; the rest of the batch keeps its calendar ids."""
        now = datetime.now(timezone.utc)
        owner = await _lead(db, company, external_contact_id="ghl_dup", crm_sync_status="synced")
        stale = await _lead(db, company, crm_sync_status="pending", sync_source=SYNC_SOURCE_UI,
                            updated_at=now - timedelta(hours=2))
        booked = await _lead(db, company, external_contact_id="ghl_c", phone="5550000009",
                             status="appointment_set", appointment_date=date(2026, 3, 15),
                             appointment_time="14:30", crm_sync_status="pending",
                             sync_source=SYNC_SOURCE_UI, updated_at=now - timedelta(hours=1))

        crm = _make_crm(upsert_contact=AsyncMock(return_value={"contact_id": "ghl_dup", "success": True, "error": None}))
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm), \
             patch("jobflow.utils.alerting.send_alert", new_callable=AsyncMock):
            assert await sync_due_leads(now=now) == 2
            assert await sync_due_leads(now=now) == 0

        await db.refresh(stale)
        await db.refresh(booked)
        await db.refresh(owner)
        assert stale.crm_sync_status == "failed"
        assert stale.external_contact_id is None
        assert booked.crm_sync_status == "synced"
        assert booked.appointment_event_id == "ev_1"
        assert crm.create_calendar_event.await_count == 1
        assert owner.external_contact_id == "ghl_dup"

    async def test_rejected_write_isolated_to_its_lead(self, db, company):
        """A unique-constraint failure at commit rolls back only that lead and schedules its retry."""
        now = datetime.now(timezone.utc)
        await _lead(db, company, external_contact_id="ghl_dup", crm_sync_status="synced")
        stale = await _lead(db, company, crm_sync_status="pending", sync_source=SYNC_SOURCE_UI,
                            updated_at=now - timedelta(hours=2))
        booked = await _lead(db, company, external_contact_id="ghl_c", phone="5550000009",
                             status="appointment_set", appointment_date=date(2026, 3, 15),
                             appointment_time="14:30", crm_sync_status="pending",
                             sync_source=SYNC_SOURCE_UI, updated_at=now - timedelta(hours=1))

        crm = _make_crm(upsert_contact=AsyncMock(return_value={"contact_id": "ghl_dup", "success": True, "error": None}))
        with patch("jobflow.workers.crm_sync.async_session_factory", _session_factory(db)), \
             patch("jobflow.workers.crm_sync.get_crm_for_company", return_value=crm), \
             patch("jobflow.workers.crm_sync._contact_owner", new_callable=AsyncMock, return_value=None):
            assert await sync_due_leads(now=now) == 2

        await db.refresh(stale)
        await db.refresh(booked)
        assert stale.crm_sync_status == "retrying"
        assert stale.crm_sync_error.startswith("Lead write rejected")
        assert stale.external_contact_id is None
        assert booked.crm_sync_status == "synced"
        assert booked.appointment_event_id == "ev_1"
