"""
Supabase Stores
ContactDirectory, CallLedger and webhook audit persistence backed by Supabase (PostgREST)

Tables:
- contacts            (tenant_id, phone_number unique among active rows per tenant)
- contact_addresses   (contact_id, label unique per contact)
- call_logs           (tenant_id, contact_id nullable)
- webhook_logs        (audit trail of webhook invocations)
"""
import logging
from typing import Any, Dict, List, Optional
from datetime import datetime

from supabase import Client

from callcrm.domain.errors import (
    DependencyError,
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

# Postgres unique_violation
UNIQUE_VIOLATION = "23505"

CONTACT_SELECT = "*, addresses:contact_addresses(*)"


def _is_unique_violation(error: Exception) -> bool:
    return getattr(error, "code", None) == UNIQUE_VIOLATION


def _first(response) -> Optional[Dict[str, Any]]:
    data = getattr(response, "data", None)
    return data[0] if data else None


class SupabaseContactDirectory(ContactDirectory):
    """Contact Directory over the contacts / contact_addresses tables"""

    CONTACTS_TABLE = "contacts"
    ADDRESSES_TABLE = "contact_addresses"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def find_active_by_phone(self, tenant_id: str, phone_number: str) -> Optional[Contact]:
        try:
            response = self.supabase.table(self.CONTACTS_TABLE).select(CONTACT_SELECT).eq(
                "tenant_id", tenant_id
            ).eq("phone_number", phone_number).eq("is_active", True).limit(1).execute()
        except Exception as e:
            raise DependencyError(f"Contact lookup failed: {e}", operation="find_active_by_phone") from e

        row = _first(response)
        return Contact(**row) if row else None

    async def get_contact(self, tenant_id: str, contact_id: str) -> Optional[Contact]:
        try:
            response = self.supabase.table(self.CONTACTS_TABLE).select(CONTACT_SELECT).eq(
                "id", contact_id
            ).eq("tenant_id", tenant_id).eq("is_active", True).limit(1).execute()
        except Exception as e:
            raise DependencyError(f"Get contact failed: {e}", operation="get_contact") from e

        row = _first(response)
        return Contact(**row) if row else None

    async def list_contacts(self, tenant_id: str) -> List[Contact]:
        try:
            response = self.supabase.table(self.CONTACTS_TABLE).select(CONTACT_SELECT).eq(
                "tenant_id", tenant_id
            ).eq("is_active", True).order("created_at", desc=True).execute()
        except Exception as e:
            raise DependencyError(f"List contacts failed: {e}", operation="list_contacts") from e

        return [Contact(**row) for row in (response.data or [])]

    async def create_contact(
        self,
        tenant_id: str,
        phone_number: str,
        name: str,
        global_note: Optional[str] = None
    ) -> Contact:
        canonical = normalize(phone_number)
        try:
            response = self.supabase.table(self.CONTACTS_TABLE).insert({
                "tenant_id": tenant_id,
                "phone_number": canonical,
                "name": name,
                "global_note": global_note,
                "is_active": True,
            }).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateContactError(tenant_id, canonical) from e
            raise DependencyError(f"Create contact failed: {e}", operation="create_contact") from e

        row = _first(response)
        if not row:
            raise DependencyError("Contact was not created - no data returned", operation="create_contact")

        logger.info(f"Created contact {row['id']} for tenant {tenant_id}")
        return Contact(**row)

    async def update_contact(
        self,
        tenant_id: str,
        contact_id: str,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        global_note: Optional[str] = None
    ) -> Contact:
        changes: Dict[str, Any] = {"updated_at": utc_now().isoformat()}
        if name is not None:
            changes["name"] = name
        if phone_number is not None:
            changes["phone_number"] = normalize(phone_number)
        if global_note is not None:
            changes["global_note"] = global_note

        try:
            self.supabase.table(self.CONTACTS_TABLE).update(changes).eq(
                "id", contact_id
            ).eq("tenant_id", tenant_id).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateContactError(tenant_id, changes.get("phone_number", "")) from e
            raise DependencyError(f"Update contact failed: {e}", operation="update_contact") from e

        contact = await self.get_contact(tenant_id, contact_id)
        if contact is None:
            raise NotFoundError("Contact", contact_id)
        return contact

    async def deactivate_contact(self, tenant_id: str, contact_id: str) -> None:
        try:
            self.supabase.table(self.CONTACTS_TABLE).update({
                "is_active": False,
                "updated_at": utc_now().isoformat(),
            }).eq("id", contact_id).eq("tenant_id", tenant_id).execute()
        except Exception as e:
            raise DependencyError(f"Delete contact failed: {e}", operation="deactivate_contact") from e

    async def add_address(
        self,
        contact_id: str,
        label: str,
        address: str,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: bool = False
    ) -> Address:
        # The unique index is on lower(trim(label)); check first for a typed error
        # on stores where the index is missing.
        await self._ensure_label_free(contact_id, label)
        try:
            response = self.supabase.table(self.ADDRESSES_TABLE).insert({
                "contact_id": contact_id,
                "label": label.strip(),
                "address": address,
                "phone": phone,
                "comment": comment,
                "is_primary": is_primary,
            }).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateAddressLabelError(contact_id, label) from e
            raise DependencyError(f"Create address failed: {e}", operation="add_address") from e

        row = _first(response)
        if not row:
            raise DependencyError("Address was not created - no data returned", operation="add_address")
        return Address(**row)

    async def update_address(
        self,
        address_id: str,
        label: Optional[str] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: Optional[bool] = None
    ) -> Address:
        current = await self._get_address(address_id)

        changes: Dict[str, Any] = {}
        if label is not None:
            if label.strip().lower() != current.label.strip().lower():
                await self._ensure_label_free(current.contact_id, label)
            changes["label"] = label.strip()
        if address is not None:
            changes["address"] = address
        if phone is not None:
            changes["phone"] = phone
        if comment is not None:
            changes["comment"] = comment
        if is_primary is not None:
            changes["is_primary"] = is_primary

        if not changes:
            return current

        try:
            response = self.supabase.table(self.ADDRESSES_TABLE).update(changes).eq(
                "id", address_id
            ).execute()
        except Exception as e:
            if _is_unique_violation(e):
                raise DuplicateAddressLabelError(current.contact_id, label or "") from e
            raise DependencyError(f"Update address failed: {e}", operation="update_address") from e

        row = _first(response)
        return Address(**row) if row else current.model_copy(update=changes)

    async def delete_address(self, address_id: str) -> None:
        try:
            self.supabase.table(self.ADDRESSES_TABLE).delete().eq("id", address_id).execute()
        except Exception as e:
            raise DependencyError(f"Delete address failed: {e}", operation="delete_address") from e

    async def _get_address(self, address_id: str) -> Address:
        try:
            response = self.supabase.table(self.ADDRESSES_TABLE).select("*").eq(
                "id", address_id
            ).limit(1).execute()
        except Exception as e:
            raise DependencyError(f"Get address failed: {e}", operation="get_address") from e

        row = _first(response)
        if not row:
            raise NotFoundError("Address", address_id)
        return Address(**row)

    async def _ensure_label_free(self, contact_id: str, label: str) -> None:
        try:
            response = self.supabase.table(self.ADDRESSES_TABLE).select("id, label").eq(
                "contact_id", contact_id
            ).execute()
        except Exception as e:
            raise DependencyError(f"Address label check failed: {e}", operation="add_address") from e

        wanted = label.strip().lower()
        for row in response.data or []:
            if (row.get("label") or "").strip().lower() == wanted:
                raise DuplicateAddressLabelError(contact_id, label)


class SupabaseCallLedger(CallLedger, WebhookAuditStore):
    """Call Ledger over the call_logs table, audit entries in webhook_logs"""

    CALL_LOGS_TABLE = "call_logs"
    WEBHOOK_LOGS_TABLE = "webhook_logs"

    def __init__(self, supabase: Client):
        self.supabase = supabase

    async def create(self, data: CallLogCreate) -> CallLog:
        row_data = data.model_dump(mode="json")
        row_data.update({
            "status": CallStatus.INCOMING.value,
            "direction": "inbound",
        })

        try:
            response = self.supabase.table(self.CALL_LOGS_TABLE).insert(row_data).execute()
        except Exception as e:
            raise DependencyError(f"Failed to create call log: {e}", operation="create_call_log") from e

        row = _first(response)
        if not row:
            raise DependencyError(
                "Call log was not created - no data returned from database",
                operation="create_call_log"
            )
        return CallLog(**row)

    async def get(self, call_log_id: str) -> Optional[CallLog]:
        try:
            response = self.supabase.table(self.CALL_LOGS_TABLE).select("*").eq(
                "id", call_log_id
            ).limit(1).execute()
        except Exception as e:
            raise DependencyError(f"Get call log failed: {e}", operation="get_call_log") from e

        row = _first(response)
        return CallLog(**row) if row else None

    async def update_status(
        self,
        call_log_id: str,
        status: CallStatus,
        update: Optional[CallLogUpdate] = None
    ) -> CallLog:
        changes: Dict[str, Any] = {"status": status.value}
        if update is not None:
            changes.update(CallLogUpdate(**update.changes()).model_dump(mode="json", exclude_unset=True))
        return await self._update(call_log_id, changes, "update_call_status")

    async def set_selected_address(self, call_log_id: str, address_id: Optional[str]) -> CallLog:
        return await self._update(call_log_id, {"selected_address_id": address_id}, "set_selected_address")

    async def link_contact(self, call_log_id: str, contact_id: str) -> CallLog:
        return await self._update(call_log_id, {"contact_id": contact_id}, "link_contact")

    async def list_since(
        self,
        tenant_id: str,
        since: Optional[datetime] = None,
        status: Optional[CallStatus] = None,
        limit: int = 50
    ) -> List[CallLog]:
        try:
            query = self.supabase.table(self.CALL_LOGS_TABLE).select("*").eq("tenant_id", tenant_id)
            if since is not None:
                query = query.gt("timestamp", since.isoformat())
            if status is not None:
                query = query.eq("status", status.value)
            response = query.order("timestamp").limit(limit).execute()
        except Exception as e:
            raise DependencyError(f"List call logs failed: {e}", operation="list_call_logs") from e

        return [CallLog(**row) for row in (response.data or [])]

    async def insert_webhook_log(self, entry: Dict[str, Any]) -> None:
        try:
            self.supabase.table(self.WEBHOOK_LOGS_TABLE).insert(entry).execute()
        except Exception as e:
            raise DependencyError(f"Webhook audit insert failed: {e}", operation="insert_webhook_log") from e

    async def _update(self, call_log_id: str, changes: Dict[str, Any], operation: str) -> CallLog:
        try:
            response = self.supabase.table(self.CALL_LOGS_TABLE).update(changes).eq(
                "id", call_log_id
            ).execute()
        except Exception as e:
            raise DependencyError(f"Call log update failed: {e}", operation=operation) from e

        row = _first(response)
        if not row:
            raise NotFoundError("CallLog", call_log_id)
        return CallLog(**row)
