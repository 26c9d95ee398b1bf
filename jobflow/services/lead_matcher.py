"""
Lead matcher — finds the existing lead an incoming contact refers to.

Priority (short-circuits on the first category that yields a row):
1. external_contact_id  (strongest: CRM identity)
2. phone                (digits-only canonical form)
3. email                (lower-cased)

Matching is always scoped to one company. No fuzzy matching.
"""
import logging
import uuid
from typing import Optional

from jobflow.models.lead import Lead
from jobflow.schemas.incoming_contact import IncomingContact
from jobflow.services.lead_store import LeadStore
from jobflow.utils.logging import mask_phone

logger = logging.getLogger(__name__)


def _pick_oldest(candidates: list[Lead], key: str, company_id: uuid.UUID) -> Optional[Lead]:
    if not candidates:
        return None
    if len(candidates) > 1:
        logger.warning(
            "Duplicate leads share %s in company %s, using oldest %s",
            key, str(company_id)[:8], str(candidates[0].id)[:8],
            extra={"company_id": str(company_id), "lead_id": str(candidates[0].id)},
        )
    return candidates[0]


async def find_matching_lead(
    store: LeadStore,
    contact: IncomingContact,
    company_id: uuid.UUID,
) -> Optional[Lead]:
    """Return the lead this contact refers to, or None when it is new."""
    if contact.external_contact_id:
        lead = _pick_oldest(
            await store.find_by_external_id(company_id, contact.external_contact_id),
            "external_contact_id", company_id,
        )
        if lead:
            logger.debug("Matched lead %s by external id", str(lead.id)[:8])
            return lead

    if contact.phone:
        lead = _pick_oldest(
            await store.find_by_phone(company_id, contact.phone),
            f"phone {mask_phone(contact.phone)}", company_id,
        )
        if lead:
            logger.debug("Matched lead %s by phone", str(lead.id)[:8])
            return lead

    if contact.email:
        lead = _pick_oldest(
            await store.find_by_email(company_id, contact.email),
            "email", company_id,
        )
        if lead:
            logger.debug("Matched lead %s by email", str(lead.id)[:8])
            return lead

    return None
