"""
Contact Directory Interface
Abstract base class for tenant-scoped contact storage
"""
from abc import ABC, abstractmethod
from typing import Optional, List

from callcrm.domain.models.contact import Contact, Address


class ContactDirectory(ABC):
    """
    Lookup/create/update of contacts and their addresses, scoped by tenant.

    Implementations store phone numbers in canonical form (see
    phone_normalizer.normalize) and enforce:
    - one active contact per (tenant, phone_number): DuplicateContactError
    - one address per (contact, label): DuplicateAddressLabelError

    Any other storage failure surfaces as DependencyError.
    """

    @abstractmethod
    async def find_active_by_phone(self, tenant_id: str, phone_number: str) -> Optional[Contact]:
        """
        Exact-match lookup of an active contact, with addresses.

        Returns None when the caller is unknown; absence is not an error.
        """
        pass

    @abstractmethod
    async def get_contact(self, tenant_id: str, contact_id: str) -> Optional[Contact]:
        """Fetch one active contact of the tenant, with addresses."""
        pass

    @abstractmethod
    async def list_contacts(self, tenant_id: str) -> List[Contact]:
        """All active contacts of the tenant, newest first."""
        pass

    @abstractmethod
    async def create_contact(
        self,
        tenant_id: str,
        phone_number: str,
        name: str,
        global_note: Optional[str] = None
    ) -> Contact:
        """Create a contact; phone_number is normalized before storing."""
        pass

    @abstractmethod
    async def update_contact(
        self,
        tenant_id: str,
        contact_id: str,
        name: Optional[str] = None,
        phone_number: Optional[str] = None,
        global_note: Optional[str] = None
    ) -> Contact:
        """Update the given fields; untouched fields keep their values."""
        pass

    @abstractmethod
    async def deactivate_contact(self, tenant_id: str, contact_id: str) -> None:
        """Soft delete. The row stays so call logs keep their reference."""
        pass

    @abstractmethod
    async def add_address(
        self,
        contact_id: str,
        label: str,
        address: str,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: bool = False
    ) -> Address:
        """Attach an address to a contact."""
        pass

    @abstractmethod
    async def update_address(
        self,
        address_id: str,
        label: Optional[str] = None,
        address: Optional[str] = None,
        phone: Optional[str] = None,
        comment: Optional[str] = None,
        is_primary: Optional[bool] = None
    ) -> Address:
        pass

    @abstractmethod
    async def delete_address(self, address_id: str) -> None:
        """Hard delete of one address, independent of its contact."""
        pass
