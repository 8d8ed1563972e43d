"""Domain interfaces for external collaborators"""

from .contact_directory import ContactDirectory
from .call_ledger import CallLedger, WebhookAuditStore
from .event_publisher import EventPublisher, NullPublisher

__all__ = [
    "ContactDirectory",
    "CallLedger",
    "WebhookAuditStore",
    "EventPublisher",
    "NullPublisher",
]
