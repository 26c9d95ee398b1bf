"""
Contact normalizer — reduces an arbitrary CRM webhook payload to an IncomingContact.

GoHighLevel sends contact fields under varying names depending on the
trigger (workflow webhook, contact event, custom webhook action): flat keys,
a nested customData object, nested contact/location objects, snake_case or
camelCase. Every logical field has an ordered alias list; the first
non-blank value wins. Source-format variance stops here.
"""
import logging
from typing import Any, Optional

from jobflow.errors import MissingTenantScopeError
from jobflow.schemas.incoming_contact import IncomingContact
from jobflow.utils.phone import canonical_phone

logger = logging.getLogger(__name__)

# Containers searched, in order, for every alias
NESTED_CONTAINERS = ("customData", "contact")

FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "location_id": ("locationId", "location_id", "location.id"),
    "external_contact_id": ("contact_id", "contactId", "contact.id", "id"),
    "full_name": ("full_name", "fullName", "contact_name", "contactName", "name"),
    "first_name": ("firstName", "first_name"),
    "last_name": ("lastName", "last_name"),
    "phone": ("phone", "phoneNumber", "phone_number"),
    "email": ("email", "emailAddress", "email_address"),
    "address": ("address1", "address", "address_1", "streetAddress", "street_address"),
    "city": ("city",),
    "state": ("state", "stateCode", "state_code"),
    "zip": ("postalCode", "postal_code", "zip", "zipCode", "zip_code"),
    "referral_source": (
        "contact.jf_referral_source",
        "contact.jf_lead_source",
        "referral_source",
        "referralSource",
    ),
    "lead_source": ("contact.jf_lead_origin", "lead_source", "leadSource", "contact_source", "source"),
    "project_type": ("contact.est_project_type", "contact.jf_project_type", "project_type", "projectType"),
    "notes": ("contact.jf_notes", "notes"),
}


def _clean(value: Any) -> Optional[str]:
    """Scalar → stripped string; blanks, containers and None → None."""
    if value is None or isinstance(value, (dict, list, tuple, set)):
        return None
    if isinstance(value, bool):
        return None
    text = str(value).strip()
    return text or None


def _lookup(container: dict, alias: str) -> Optional[str]:
    """Literal key first, then dotted path through nested dicts."""
    if alias in container:
        found = _clean(container[alias])
        if found is not None:
            return found

    if "." not in alias:
        return None

    node: Any = container
    for part in alias.split("."):
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return _clean(node)


def resolve_field(payload: dict, field: str) -> Optional[str]:
    """Evaluate the alias table for one logical field."""
    containers = [payload]
    for name in NESTED_CONTAINERS:
        nested = payload.get(name)
        if isinstance(nested, dict):
            containers.append(nested)

    for alias in FIELD_ALIASES[field]:
        for container in containers:
            value = _lookup(container, alias)
            if value is not None:
                return value
    return None


def _assemble_name(payload: dict) -> str:
    full = resolve_field(payload, "full_name")
    if full:
        return " ".join(full.split())
    first = resolve_field(payload, "first_name") or ""
    last = resolve_field(payload, "last_name") or ""
    return f"{first} {last}".strip()


def normalize_contact(payload: dict) -> IncomingContact:
    """
    Build the canonical contact for a webhook payload.

    Raises MissingTenantScopeError when no location id can be resolved;
    every other missing field degrades to "" (name, phone) or None.
    """
    if not isinstance(payload, dict):
        raise MissingTenantScopeError("Webhook payload must be a JSON object")

    location_id = resolve_field(payload, "location_id")
    if not location_id:
        logger.warning(
            "Webhook payload has no locationId (keys: %s)",
            ", ".join(sorted(payload.keys()))[:200],
        )
        raise MissingTenantScopeError("Missing locationId")

    email = resolve_field(payload, "email")

    return IncomingContact(
        location_id=location_id,
        external_contact_id=resolve_field(payload, "external_contact_id"),
        name=_assemble_name(payload),
        phone=canonical_phone(resolve_field(payload, "phone")),
        email=email.lower() if email else None,
        address=resolve_field(payload, "address"),
        city=resolve_field(payload, "city"),
        state=resolve_field(payload, "state"),
        zip=resolve_field(payload, "zip"),
        referral_source=resolve_field(payload, "referral_source"),
        lead_source=resolve_field(payload, "lead_source"),
        project_type=resolve_field(payload, "project_type"),
        notes=resolve_field(payload, "notes"),
    )
