"""
Domain Errors
Typed failures raised by the correlation engine, stores and ingress handlers
"""


class CallCRMError(Exception):
    """Base class for all callcrm failures."""
    def __init__(self, message: str = "Call CRM operation failed"):
        self.message = message
        super().__init__(self.message)


class ValidationError(CallCRMError):
    """Bad or missing input (webhook body, tenant id, caller id). Maps to 4xx."""
    def __init__(self, message: str = "Invalid request"):
        super().__init__(message)


class DependencyError(CallCRMError):
    """Store unreachable or a read/write against it failed. Maps to 5xx."""
    def __init__(self, message: str = "Storage dependency failed", operation: str = None):
        self.operation = operation
        super().__init__(message)


class DuplicateContactError(DependencyError):
    """An active contact with this phone number already exists in the tenant."""
    def __init__(self, tenant_id: str, phone_number: str):
        self.tenant_id = tenant_id
        self.phone_number = phone_number
        super().__init__(
            f"A contact with phone number {phone_number} already exists",
            operation="create_contact"
        )


class DuplicateAddressLabelError(DependencyError):
    """The contact already has an address with this label."""
    def __init__(self, contact_id: str, label: str):
        self.contact_id = contact_id
        self.label = label
        super().__init__(
            f'Address label "{label}" already exists for this contact',
            operation="add_address"
        )


class NotFoundError(CallCRMError):
    """Referenced contact, address or call log does not exist."""
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")
