"""
Lead model - a prospective customer tracked through the sales pipeline.
Lifecycle: lead → appointment_set → sold | not_sold → complete.
not_sold → sold is the recovery path; complete is terminal.

referral_source and lead_source are write-once: they may only go from
empty to a value, never from one value to another.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional
from sqlalchemy import (
    String, Text, Numeric, Integer, Boolean, Date, DateTime, ForeignKey, Index, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from jobflow.database import Base

SYNC_SOURCE_UI = "UI"
SYNC_SOURCE_EXTERNAL = "EXTERNAL"


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("companies.id"), nullable=False
    )

    # External CRM identity (GoHighLevel contact id)
    external_contact_id: Mapped[Optional[str]] = mapped_column(String(100))

    # Contact info
    name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    phone: Mapped[str] = mapped_column(String(20), default="", nullable=False)  # digits only
    email: Mapped[Optional[str]] = mapped_column(String(255))
    address: Mapped[Optional[str]] = mapped_column(Text)
    city: Mapped[Optional[str]] = mapped_column(String(100))
    state: Mapped[Optional[str]] = mapped_column(String(50))
    zip: Mapped[Optional[str]] = mapped_column(String(20))

    # Classification
    buyer_type: Mapped[Optional[str]] = mapped_column(String(50))  # residential, commercial
    company_name: Mapped[Optional[str]] = mapped_column(String(255))
    project_type: Mapped[Optional[str]] = mapped_column(String(100))

    # Provenance (write-once)
    referral_source: Mapped[Optional[str]] = mapped_column(String(100))
    lead_source: Mapped[Optional[str]] = mapped_column(String(100))

    # Business fields
    notes: Mapped[Optional[str]] = mapped_column(Text)
    contract_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2))
    not_sold_reason: Mapped[Optional[str]] = mapped_column(Text)

    # Pipeline
    status: Mapped[str] = mapped_column(String(30), default="lead", nullable=False)
    appointment_date: Mapped[Optional[date]] = mapped_column(Date)
    appointment_time: Mapped[Optional[str]] = mapped_column(String(5))  # HH:MM, 24h
    install_date: Mapped[Optional[date]] = mapped_column(Date)
    install_tentative: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Sync bookkeeping
    sync_source: Mapped[str] = mapped_column(String(20), default=SYNC_SOURCE_UI, nullable=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    crm_sync_status: Mapped[str] = mapped_column(
        String(20), default="pending", nullable=False
    )  # pending, synced, retrying, failed, skipped
    crm_sync_error: Mapped[Optional[str]] = mapped_column(Text)
    crm_sync_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    crm_next_retry_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Calendar sync (GoHighLevel appointment + install events)
    appointment_event_id: Mapped[Optional[str]] = mapped_column(String(100))
    synced_appointment_at: Mapped[Optional[str]] = mapped_column(String(20))  # "YYYY-MM-DD HH:MM"
    install_event_id: Mapped[Optional[str]] = mapped_column(String(100))
    synced_install_date: Mapped[Optional[date]] = mapped_column(Date)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )

    # Relationships
    company: Mapped["Company"] = relationship(back_populates="leads")
    events: Mapped[list["EventLog"]] = relationship(
        back_populates="lead", lazy="select", order_by="EventLog.created_at"
    )

    __table_args__ = (
        UniqueConstraint("company_id", "external_contact_id", name="uq_leads_company_external_contact"),
        Index("ix_leads_company_id", "company_id"),
        Index("ix_leads_company_phone", "company_id", "phone"),
        Index("ix_leads_company_email", "company_id", "email"),
        Index("ix_leads_status", "status"),
        Index("ix_leads_crm_sync_status", "crm_sync_status"),
        Index("ix_leads_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        masked = self.phone[:6] + "***" if self.phone else "unknown"
        return f"<Lead {masked} status={self.status}>"
