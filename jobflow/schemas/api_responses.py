"""
API response schemas for the webhook and lead endpoints.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, ConfigDict


class WebhookResponse(BaseModel):
    success: bool = True
    message: str
    lead_id: str


class LeadOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    company_id: str
    external_contact_id: Optional[str] = None
    name: str
    phone: str
    email: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    buyer_type: Optional[str] = None
    company_name: Optional[str] = None
    project_type: Optional[str] = None
    referral_source: Optional[str] = None
    lead_source: Optional[str] = None
    notes: Optional[str] = None
    contract_price: Optional[Decimal] = None
    not_sold_reason: Optional[str] = None
    status: str
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    install_date: Optional[date] = None
    install_tentative: bool = False
    sync_source: str
    last_synced_at: Optional[datetime] = None
    crm_sync_status: str
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_lead(cls, lead) -> "LeadOut":
        data = {field: getattr(lead, field, None) for field in cls.model_fields}
        data["id"] = str(lead.id)
        data["company_id"] = str(lead.company_id)
        return cls(**data)


class LeadDetailResponse(BaseModel):
    lead: LeadOut
    status_label: str
    allowed_transitions: list[str]


class LeadListResponse(BaseModel):
    leads: list[LeadOut]
    total: int
    page: int = 1
    pages: int = 1


class PipelineErrorOut(BaseModel):
    kind: str
    message: str
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    missing_fields: list[str] = []


class PipelineErrorResponse(BaseModel):
    error: PipelineErrorOut
