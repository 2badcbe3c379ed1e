"""Collaborators used by the built-in action handlers.

- EmailSender / SMTPEmailSender for send_email
- RecordStore / InMemoryRecordStore and UpdateTargetRegistry for create_task and update_record
- ReportRegistry for generate_report
- Notifier / WebhookNotifier / LogNotifier for send_notification
- AIAnalyzer / PydanticAIAnalyzer for ai_analysis
"""

from .ai import AIAnalyzer, PydanticAIAnalyzer
from .email import EmailSender, SMTPEmailSender, normalise_recipients
from .notifications import LogNotifier, Notifier, WebhookNotifier, create_notifier
from .records import (
    InMemoryRecordStore,
    RecordStore,
    UpdateTarget,
    UpdateTargetRegistry,
)
from .reports import ReportGenerator, ReportRegistry

__all__ = [
    "AIAnalyzer",
    "PydanticAIAnalyzer",
    "EmailSender",
    "SMTPEmailSender",
    "normalise_recipients",
    "Notifier",
    "LogNotifier",
    "WebhookNotifier",
    "create_notifier",
    "RecordStore",
    "InMemoryRecordStore",
    "UpdateTarget",
    "UpdateTargetRegistry",
    "ReportGenerator",
    "ReportRegistry",
]
