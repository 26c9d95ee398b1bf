"""
Request bodies for the lead UI endpoints.
"""
from datetime import date
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from jobflow.utils.dates import normalize_time_24h


class LeadCreateRequest(BaseModel):
    name: str = ""
    phone: str = ""
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


class LeadUpdateRequest(BaseModel):
    """
    Partial lead edit. Only fields present in the request body are applied;
    an explicit null clears a field. `status` requests a pipeline transition.
    """
    name: Optional[str] = None
    phone: Optional[str] = None
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

    status: Optional[str] = Field(default=None, description="Requested pipeline status")
    not_sold_reason: Optional[str] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    install_date: Optional[date] = None
    install_tentative: Optional[bool] = None

    @field_validator("appointment_time")
    @classmethod
    def _normalize_time(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        normalized = normalize_time_24h(value)
        if normalized is None:
            raise ValueError("appointment_time must look like 14:30 or 2:30 PM")
        return normalized
