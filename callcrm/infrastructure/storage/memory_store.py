"""
In-Memory Stores
Process-local ContactDirectory and CallLedger used for local development and tests

Enforces the same uniqueness rules as the database constraints.
"""
import uuid
import logging
from typing import Callable, Dict, List, Optional, Any
from datetime import datetime

from callcrm.domain.errors import (
    DuplicateAddressLabelError,
    DuplicateContactError,
    NotFoundError,
)
from callcrm.domain.interfaces.call_ledger import CallLedger, WebhookAuditStore
from callcrm.domain.interfaces.contact_directory import ContactDirectory
from callcrm.domain.models.call_log import (
    CallLog,
    CallLogCreate,
    CallLogUpdate,
    CallStatus,
    utc_now,
)
from callcrm.domain.models.contact import Address, Contact
from callcrm.domain.services.phone_normalizer import normalize

logger = logging.getLogger(__name__)


def _new_id() -> str:
    return str(uuid.uuid4())


def _label_key(label: str) -> str:
    return label.strip().lower()


class InMemoryContactDirectory(ContactDirectory):
    """Contacts and addresses held in dictionaries. Reads return copies."""

    def __init__(self, now: Callable[[], datetime] = utc_now):
        self._now = now
        self._contacts: Dict[str, Contact] = {}
        self._addresses: Dict[str, Address] = {}

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def find_active_by_phone(self, tenant_id: str, phone_number: str) -> Optional[Contact]:
        for contact in self._contacts.values():
            if (
                contact.tenant_id == tenant_id
                and contact.is_active
                and contact.phone_number == phone_number
            ):
                return self._hydrate(contact)
        return None

    async def get_contact(self, tenant_id: str, contact_id: str) -> Optional[Contact]:
        contact = self._contacts.get(contact_id)
        if not contact or contact.tenant_id != tenant_id or not contact.is_active:
            return None
        return self._hydrate(contact)

    async def list_contacts(self, tenant_id: str) -> List[Contact]:
        contacts = [
            c for c in self._contacts.values()
            if c.tenant_id == tenant_id and c.is_active
        ]
        contacts.sort(key=lambda c: c.created_at, reverse=True)
        return [self._hydrate(c) for c in contacts]

    async def create_contact(
        self,
        tenant_id: str,
        phone_number: str,
        name: str,
        global_note: Optional[str] = None
    ) -> Contact:
        canonical = normalize(phone_number)
        self._ensure_phone_free(tenant_id, canonical)

        now = self._now()
        contact = Contact(
            id=_new_id(),
            tenant_id=tenant_id,
            phone_number=canonical,
            name=name,
            global_note=global_note,
            created_at=now,
            updated_at=now,
        )
        self._contacts[contact.id] = contact
        logger.debug(f"Created contact {contact.id} ({canonical}) for tenant {tenant_id}")
        return self._hydrate(contact)

    async def update_contact(
        self,
        tenant_id: str,
        contact_id: str,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        global_note: Optional[str] = None
    ) -> Contact:
        contact = self._require_contact(tenant_id, contact_id)

        if phone_number is not None:
            canonical = normalize(phone_number)
            if canonical != contact.phone_number:
                self._ensure_phone_free(tenant_id, canonical)
            contact.phone_number = canonical
        if name is not None:
            contact.name = name
        if global_note is not None:
            contact.global_note = global_note
        contact.updated_at = self._now()
        return self._hydrate(contact)

    async def deactivate_contact(self, tenant_id: str, contact_id: str) -> None:
        contact = self._require_contact(tenant_id, contact_id)
        contact.is_active = False
        contact.updated_at = self._now()

    # ------------------------------------------------------------------
    # Addresses
    # ------------------------------------------------------------------

    async def add_address(
        self,
        contact_id: str,
        label: str,
        address: str,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: bool = False
    ) -> Address:
        if contact_id not in self._contacts:
            raise NotFoundError("Contact", contact_id)
        self._ensure_label_free(contact_id, label)

        record = Address(
            id=_new_id(),
            contact_id=contact_id,
            label=label.strip(),
            address=address,
            phone=phone,
            comment=comment,
            is_primary=is_primary,
            created_at=self._now(),
        )
        self._addresses[record.id] = record
        return record.model_copy(deep=True)

    async def update_address(
        self,
        address_id: str,
        label: Optional[str] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: Optional[bool] = None
    ) -> Address:
        record = self._addresses.get(address_id)
        if not record:
            raise NotFoundError("Address", address_id)

        if label is not None:
            if _label_key(label) != _label_key(record.label):
                self._ensure_label_free(record.contact_id, label)
            record.label = label.strip()
        if address is not None:
            record.address = address
        if phone is not None:
            record.phone = phone
        if comment is not None:
            record.comment = comment
        if is_primary is not None:
            record.is_primary = is_primary
        return record.model_copy(deep=True)

    async def delete_address(self, address_id: str) -> None:
        if self._addresses.pop(address_id, None) is None:
            raise NotFoundError("Address", address_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _hydrate(self, contact: Contact) -> Contact:
        hydrated = contact.model_copy(deep=True)
        hydrated.addresses = sorted(
            (a.model_copy(deep=True) for a in self._addresses.values() if a.contact_id == contact.id),
            key=lambda a: a.created_at,
        )
        return hydrated

    def _require_contact(self, tenant_id: str, contact_id: str) -> Contact:
        contact = self._contacts.get(contact_id)
        if not contact or contact.tenant_id != tenant_id or not contact.is_active:
            raise NotFoundError("Contact", contact_id)
        return contact

    def _ensure_phone_free(self, tenant_id: str, phone_number: str) -> None:
        for existing in self._contacts.values():
            if (
                existing.tenant_id == tenant_id
                and existing.is_active
                and existing.phone_number == phone_number
            ):
                raise DuplicateContactError(tenant_id, phone_number)

    def _ensure_label_free(self, contact_id: str, label: str) -> None:
        key = _label_key(label)
        for existing in self._addresses.values():
            if existing.contact_id == contact_id and _label_key(existing.label) == key:
                raise DuplicateAddressLabelError(contact_id, label)


class InMemoryCallLedger(CallLedger, WebhookAuditStore):
    """Call logs and webhook audit entries held in memory"""

    def __init__(self):
        self._logs: Dict[str, CallLog] = {}
        self.webhook_logs: List[Dict[str, Any]] = []

    async def create(self, data: CallLogCreate) -> CallLog:
        call_log = CallLog(id=_new_id(), **data.model_dump())
        self._logs[call_log.id] = call_log
        return call_log.model_copy(deep=True)

    async def get(self, call_log_id: str) -> Optional[CallLog]:
        call_log = self._logs.get(call_log_id)
        return call_log.model_copy(deep=True) if call_log else None

    async def update_status(
        self,
        call_log_id: str,
        status: CallStatus,
        update: Optional[CallLogUpdate] = None
    ) -> CallLog:
        call_log = self._require(call_log_id)
        call_log.status = status
        if update is not None:
            for field, value in update.changes().items():
                setattr(call_log, field, value)
        return call_log.model_copy(deep=True)

    async def set_selected_address(self, call_log_id: str, address_id: Optional[str]) -> CallLog:
        call_log = self._require(call_log_id)
        call_log.selected_address_id = address_id
        return call_log.model_copy(deep=True)

    async def link_contact(self, call_log_id: str, contact_id: str) -> CallLog:
        call_log = self._require(call_log_id)
        call_log.contact_id = contact_id
        return call_log.model_copy(deep=True)

    async def list_since(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        status: Optional[CallStatus] = None,
        limit: int = 50
    ) -> List[CallLog]:
        logs = [
            log for log in self._logs.values()
            if log.tenant_id == tenant_id
            and (since is None or log.timestamp > since)
            and (status is None or log.status == status)
        ]
        logs.sort(key=lambda log: log.timestamp)
        return [log.model_copy(deep=True) for log in logs[:limit]]

    async def insert_webhook_log(self, entry: Dict[str, Any]) -> None:
        self.webhook_logs.append(dict(entry))

    def all(self) -> List[CallLog]:
        """Every stored call log (test and debugging helper)"""
        return [log.model_copy(deep=True) for log in self._logs.values()]

    def _require(self, call_log_id: str) -> CallLog:
        call_log = self._logs.get(call_log_id)
        if not call_log:
            raise NotFoundError("CallLog", call_log_id)
        return call_log
