"""
CRM webhook endpoint - receives GoHighLevel contact deliveries.

Layers (in order):
1. Signature validation (when WEBHOOK_SIGNING_KEY is set)
2. Audit trail (webhook_events table)
3. Ingestion (normalize → match → merge → write → sync)

Status codes: 200 created/updated, 400 no tenant scope, 401 bad signature,
404 unknown company, 500 unexpected failure.
"""
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from jobflow.database import get_db
from jobflow.errors import MissingTenantScopeError, UnknownCompanyError
from jobflow.models.webhook_event import WebhookEvent
from jobflow.schemas.api_responses import WebhookResponse
from jobflow.services.lead_ingest import ingest_webhook_contact
from jobflow.utils.alerting import AlertType, send_alert
from jobflow.utils.logging import get_correlation_id
from jobflow.utils.webhook_signatures import compute_payload_hash, is_signature_valid

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])

SOURCE_GHL = "gohighlevel"
EVENT_CONTACT = "contact"


async def _record_webhook_event(
    db: AsyncSession,
    raw_payload: dict,
    payload_hash: str,
    processing_status: str = "received",
    error_message: Optional[str] = None,
) -> WebhookEvent:
    """Record a webhook event in the audit trail before processing."""
    event = WebhookEvent(
        source=SOURCE_GHL,
        event_type=EVENT_CONTACT,
        payload_hash=payload_hash,
        raw_payload=raw_payload,
        processing_status=processing_status,
        error_message=error_message,
        correlation_id=get_correlation_id(),
    )
    if processing_status != "received":
        event.processed_at = datetime.now(timezone.utc)
    db.add(event)
    await db.flush()
    return event


async def _complete_webhook_event(
    event: WebhookEvent,
    status: str = "completed",
    error_message: Optional[str] = None,
    company_id: Optional[uuid.UUID] = None,
    lead_id: Optional[uuid.UUID] = None,
) -> None:
    """Update webhook event status after processing."""
    event.processing_status = status
    event.error_message = error_message
    event.processed_at = datetime.now(timezone.utc)
    if company_id:
        event.company_id = company_id
    if lead_id:
        event.lead_id = lead_id


@router.post("/ghl/contact", response_model=WebhookResponse)
async def ghl_contact_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Create or update a lead from a GoHighLevel contact payload."""
    body = await request.body()

    if not is_signature_valid(request.headers, body):
        client_ip = request.client.host if request.client else "unknown"
        logger.warning("Invalid webhook signature: source=%s ip=%s", SOURCE_GHL, client_ip)
        return JSONResponse(status_code=401, content={"error": "Invalid webhook signature"})

    try:
        payload = json.loads(body or b"{}")
    except ValueError:
        logger.warning("GHL webhook body is not valid JSON (%d bytes)", len(body))
        return JSONResponse(status_code=400, content={"error": "Invalid JSON body"})
    if not isinstance(payload, dict):
        return JSONResponse(status_code=400, content={"error": "Webhook payload must be a JSON object"})

    payload_hash = compute_payload_hash(body)
    event = await _record_webhook_event(db, payload, payload_hash)

    try:
        result = await ingest_webhook_contact(db, payload)
    except MissingTenantScopeError as e:
        await _complete_webhook_event(event, "rejected", e.message)
        return JSONResponse(status_code=400, content={"error": e.message})
    except UnknownCompanyError as e:
        await _complete_webhook_event(event, "rejected", e.message)
        return JSONResponse(status_code=404, content={"error": e.message})
    except Exception as e:
        logger.error("GHL webhook processing failed: %s", str(e), exc_info=True)
        await db.rollback()
        await _record_webhook_event(db, payload, payload_hash, "failed", str(e)[:1000])
        await send_alert(
            AlertType.WEBHOOK_PROCESSING_FAILED,
            f"GHL contact webhook failed: {str(e)[:200]}",
            extra={"payload_hash": payload_hash[:12]},
        )
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Failed to process contact"},
        )

    await _complete_webhook_event(
        event, company_id=result.company_id, lead_id=result.lead_id,
    )
    return WebhookResponse(success=True, message=result.message, lead_id=str(result.lead_id))
