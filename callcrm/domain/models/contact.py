"""
Contact Domain Models
Tenant-scoped callers and their delivery addresses
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime


class Address(BaseModel):
    """Delivery address attached to a contact"""
    id: str
    contact_id: str
    label: str = Field(..., min_length=1, description="Free-text label, unique per contact")
    address: str = Field(..., description="Address text")
    phone: Optional[str] = Field(None, description="Optional phone override for this address")
    comment: Optional[str] = None
    is_primary: bool = False
    created_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")


class Contact(BaseModel):
    """
    Known caller within one tenant.

    phone_number is stored in canonical form and is unique among the
    tenant's active contacts. Contacts are soft-deleted (is_active=False)
    so call logs keep pointing at them.
    """
    id: str
    tenant_id: str
    phone_number: str = Field(..., description="Canonical +<digits> number")
    name: str
    global_note: Optional[str] = Field(None, description="Free-text note shown on every call")
    is_active: bool = True
    addresses: List[Address] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(extra="ignore")

    def get_address(self, address_id: str) -> Optional[Address]:
        for address in self.addresses:
            if address.id == address_id:
                return address
        return None

    @property
    def primary_address(self) -> Optional[Address]:
        for address in self.addresses:
            if address.is_primary:
                return address
        return self.addresses[0] if self.addresses else None
