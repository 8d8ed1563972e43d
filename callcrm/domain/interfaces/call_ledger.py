"""
Call Ledger Interface
Abstract base classes for call log and webhook audit storage
"""
from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any
from datetime import datetime

from callcrm.domain.models.call_log import CallLog, CallLogCreate, CallLogUpdate, CallStatus


class CallLedger(ABC):
    """
    Append-only store of call logs with in-place status/metadata updates.

    Rows are never deleted. Every failure surfaces as DependencyError
    (NotFoundError for an unknown call log id).
    """

    @abstractmethod
    async def create(self, data: CallLogCreate) -> CallLog:
        """Insert a new call log with status incoming, direction inbound."""
        pass

    @abstractmethod
    async def get(self, call_log_id: str) -> Optional[CallLog]:
        pass

    @abstractmethod
    async def update_status(
        self,
        call_log_id: str,
        status: CallStatus,
        update: Optional[CallLogUpdate] = None
    ) -> CallLog:
        """Set status plus any transition metadata (timestamps, duration, address)."""
        pass

    @abstractmethod
    async def set_selected_address(self, call_log_id: str, address_id: Optional[str]) -> CallLog:
        pass

    @abstractmethod
    async def link_contact(self, call_log_id: str, contact_id: str) -> CallLog:
        """Attach a (newly created) contact to a call that arrived as unknown."""
        pass

    @abstractmethod
    async def list_since(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        status: Optional[CallStatus] = None,
        limit: int = 50
    ) -> List[CallLog]:
        """Tenant call logs with timestamp > since, oldest first."""
        pass


class WebhookAuditStore(ABC):
    """Optional persistence for webhook audit entries"""

    @abstractmethod
    async def insert_webhook_log(self, entry: Dict[str, Any]) -> None:
        pass
