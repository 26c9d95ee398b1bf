"""
Canonical inbound contact — the single shape every webhook payload is
reduced to before matching and merging. Ephemeral: never persisted.
"""
from typing import Optional
from pydantic import BaseModel, Field


class IncomingContact(BaseModel):
    """
    Contact fields extracted from an external CRM payload.
    Missing optional fields are None; name and phone are always strings.
    """
    location_id: str = Field(..., description="Tenant-scope key (GoHighLevel location id)")
    external_contact_id: Optional[str] = None
    name: str = ""
    phone: str = Field(default="", description="National digits only")
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    referral_source: Optional[str] = None
    lead_source: Optional[str] = None
    project_type: Optional[str] = None
    notes: Optional[str] = None

    def match_key(self) -> str:
        """Strongest available identity, used to serialize deliveries for one contact."""
        if self.external_contact_id:
            return f"ext:{self.external_contact_id}"
        if self.phone:
            return f"phone:{self.phone}"
        if self.email:
            return f"email:{self.email}"
        return "anonymous"
