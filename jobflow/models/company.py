"""
Company model - a contracting business (tenant) using JobFlow.
Every lead belongs to exactly one company; webhooks resolve the company
through its GoHighLevel location id.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, Boolean, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from jobflow.database import Base


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # GoHighLevel sub-account
    ghl_location_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    ghl_api_key: Mapped[Optional[str]] = mapped_column(Text)
    ghl_appt_calendar: Mapped[Optional[str]] = mapped_column(String(100))
    ghl_install_calendar: Mapped[Optional[str]] = mapped_column(String(100))

    timezone_name: Mapped[str] = mapped_column(
        "timezone", String(50), default="America/Chicago", nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc)
    )

    leads: Mapped[list["Lead"]] = relationship(back_populates="company", lazy="select")

    @property
    def has_crm(self) -> bool:
        return bool(self.ghl_api_key and self.ghl_location_id)

    def __repr__(self) -> str:
        return f"<Company {self.name}>"
