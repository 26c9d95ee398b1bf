"""Initial schema — companies, leads, event_logs, webhook_events.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Companies (tenants)
    op.create_table(
        "companies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("ghl_location_id", sa.String(100), unique=True),
        sa.Column("ghl_api_key", sa.Text),
        sa.Column("ghl_appt_calendar", sa.String(100)),
        sa.Column("ghl_install_calendar", sa.String(100)),
        sa.Column("timezone", sa.String(50), nullable=False, server_default="America/Chicago"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Leads
    op.create_table(
        "leads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "company_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id"), nullable=False,
        ),
        sa.Column("external_contact_id", sa.String(100)),
        sa.Column("name", sa.String(255), nullable=False, server_default=""),
        sa.Column("phone", sa.String(20), nullable=False, server_default=""),
        sa.Column("email", sa.String(255)),
        sa.Column("address", sa.Text),
        sa.Column("city", sa.String(100)),
        sa.Column("state", sa.String(50)),
        sa.Column("zip", sa.String(20)),
        sa.Column("buyer_type", sa.String(50)),
        sa.Column("company_name", sa.String(255)),
        sa.Column("project_type", sa.String(100)),
        sa.Column("referral_source", sa.String(100)),
        sa.Column("lead_source", sa.String(100)),
        sa.Column("notes", sa.Text),
        sa.Column("contract_price", sa.Numeric(12, 2)),
        sa.Column("not_sold_reason", sa.Text),
        sa.Column("status", sa.String(30), nullable=False, server_default="lead"),
        sa.Column("appointment_date", sa.Date),
        sa.Column("appointment_time", sa.String(5)),
        sa.Column("install_date", sa.Date),
        sa.Column("install_tentative", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("sync_source", sa.String(20), nullable=False, server_default="UI"),
        sa.Column("last_synced_at", sa.DateTime(timezone=True)),
        sa.Column("crm_sync_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("crm_sync_error", sa.Text),
        sa.Column("crm_sync_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("crm_next_retry_at", sa.DateTime(timezone=True)),
        sa.Column("appointment_event_id", sa.String(100)),
        sa.Column("synced_appointment_at", sa.String(20)),
        sa.Column("install_event_id", sa.String(100)),
        sa.Column("synced_install_date", sa.Date),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint(
            "company_id", "external_contact_id", name="uq_leads_company_external_contact",
        ),
    )
    op.create_index("ix_leads_company_id", "leads", ["company_id"])
    op.create_index("ix_leads_company_phone", "leads", ["company_id", "phone"])
    op.create_index("ix_leads_company_email", "leads", ["company_id", "email"])
    op.create_index("ix_leads_status", "leads", ["status"])
    op.create_index("ix_leads_crm_sync_status", "leads", ["crm_sync_status"])
    op.create_index("ix_leads_created_at", "leads", ["created_at"])

    # Event logs (audit trail)
    op.create_table(
        "event_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("lead_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("leads.id")),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("companies.id")),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), server_default="success"),
        sa.Column("source", sa.String(20)),
        sa.Column("message", sa.Text),
        sa.Column("error_message", sa.Text),
        sa.Column("data", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_events_lead_id", "event_logs", ["lead_id"])
    op.create_index("ix_events_company_id", "event_logs", ["company_id"])
    op.create_index("ix_events_action", "event_logs", ["action"])
    op.create_index("ix_events_created_at", "event_logs", ["created_at"])

    # Webhook audit trail, every CRM delivery is recorded before processing
    op.create_table(
        "webhook_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("payload_hash", sa.String(64), nullable=False),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column(
            "company_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("companies.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column(
            "lead_id", postgresql.UUID(as_uuid=True),
            sa.ForeignKey("leads.id", ondelete="SET NULL"), nullable=True,
        ),
        sa.Column("processing_status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("correlation_id", sa.String(64), nullable=True),
    )
    op.create_index("ix_webhook_events_source", "webhook_events", ["source"])
    op.create_index("ix_webhook_events_payload_hash", "webhook_events", ["payload_hash"])
    op.create_index("ix_webhook_events_company_id", "webhook_events", ["company_id"])
    op.create_index("ix_webhook_events_correlation_id", "webhook_events", ["correlation_id"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_correlation_id", table_name="webhook_events")
    op.drop_index("ix_webhook_events_company_id", table_name="webhook_events")
    op.drop_index("ix_webhook_events_payload_hash", table_name="webhook_events")
    op.drop_index("ix_webhook_events_source", table_name="webhook_events")
    op.drop_table("webhook_events")

    op.drop_index("ix_events_created_at", table_name="event_logs")
    op.drop_index("ix_events_action", table_name="event_logs")
    op.drop_index("ix_events_company_id", table_name="event_logs")
    op.drop_index("ix_events_lead_id", table_name="event_logs")
    op.drop_table("event_logs")

    op.drop_index("ix_leads_created_at", table_name="leads")
    op.drop_index("ix_leads_crm_sync_status", table_name="leads")
    op.drop_index("ix_leads_status", table_name="leads")
    op.drop_index("ix_leads_company_email", table_name="leads")
    op.drop_index("ix_leads_company_phone", table_name="leads")
    op.drop_index("ix_leads_company_id", table_name="leads")
    op.drop_table("leads")

    op.drop_table("companies")
