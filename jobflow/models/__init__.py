"""
Database models - import all models here so Alembic can discover them.
"""
from jobflow.models.company import Company
from jobflow.models.lead import Lead
from jobflow.models.event_log import EventLog
from jobflow.models.webhook_event import WebhookEvent

__all__ = [
    "Company",
    "Lead",
    "EventLog",
    "WebhookEvent",
]
