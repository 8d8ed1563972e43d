"""
Real-time Channel Message Schemas
Message types exchanged on the agent WebSocket channel

Clients join a tenant room first, then receive incoming-call events for that tenant.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Literal, Optional, Dict, Any, Union
from datetime import datetime
from enum import Enum

from callcrm.domain.models.call_log import CallLog, utc_now
from callcrm.domain.models.contact import Contact


class MessageType(str, Enum):
    """All supported channel message types"""
    # Client -> server
    JOIN_TENANT = "join_tenant"
    LEAVE_TENANT = "leave_tenant"
    PING = "ping"

    # Server -> client
    JOINED = "joined"
    LEFT = "left"
    INCOMING_CALL = "incoming_call"
    PONG = "pong"
    ERROR = "error"


# ============================================================================
# EVENT PAYLOADS
# ============================================================================

class IncomingCallData(BaseModel):
    """
    Summary of a correlated call.

    Same shape as the `data` object of the webhook success response, so
    camelCase aliases are used on the wire.
    """
    call_log_id: str = Field(..., alias="callLogId")
    caller_found: bool = Field(..., alias="callerFound")
    caller_number: str = Field(..., alias="callerNumber")
    timestamp: datetime = Field(default_factory=utc_now)
    company_id: str = Field(..., alias="companyId")
    caller_name: Optional[str] = Field(None, alias="callerName")
    address_count: int = Field(default=0, ge=0, alias="addressCount")
    webhook_id: Optional[str] = Field(None, alias="webhookId")
    duplicate: bool = False

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class IncomingCallEvent(IncomingCallData):
    """Incoming-call event pushed to agents: summary plus full contact, call log and payload"""
    contact: Optional[Contact] = None
    call_log: CallLog = Field(..., alias="callLog")
    raw_payload: Dict[str, Any] = Field(default_factory=dict, alias="rawPayload")

    @classmethod
    def from_call_log(
        cls,
        call_log: CallLog,
        contact: Optional[Contact],
        timestamp: Optional[datetime] = None
    ) -> "IncomingCallEvent":
        return cls(
            call_log_id=call_log.id,
            caller_found=contact is not None,
            caller_number=call_log.caller_number,
            timestamp=timestamp or utc_now(),
            company_id=call_log.tenant_id,
            caller_name=contact.name if contact else None,
            address_count=len(contact.addresses) if contact else 0,
            webhook_id=call_log.webhook_id,
            contact=contact,
            call_log=call_log,
            raw_payload=call_log.raw_payload,
        )

    def summary(self) -> IncomingCallData:
        return IncomingCallData(**self.model_dump(include=set(IncomingCallData.model_fields)))


# ============================================================================
# CLIENT -> SERVER
# ============================================================================

class JoinTenantMessage(BaseModel):
    """Subscribe this connection to a tenant's incoming calls"""
    type: Literal["join_tenant"] = "join_tenant"
    tenant_id: str = Field(..., min_length=1)


class LeaveTenantMessage(BaseModel):
    """Unsubscribe this connection from a tenant"""
    type: Literal["leave_tenant"] = "leave_tenant"
    tenant_id: str = Field(..., min_length=1)


class PingMessage(BaseModel):
    """Heartbeat ping"""
    type: Literal["ping"] = "ping"


# ============================================================================
# SERVER -> CLIENT
# ============================================================================

class JoinedMessage(BaseModel):
    type: Literal["joined"] = "joined"
    tenant_id: str


class LeftMessage(BaseModel):
    type: Literal["left"] = "left"
    tenant_id: str


class IncomingCallMessage(BaseModel):
    """Envelope for an incoming-call event"""
    type: Literal["incoming_call"] = "incoming_call"
    data: IncomingCallEvent

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"
    timestamp: datetime = Field(default_factory=utc_now)


class ErrorMessage(BaseModel):
    """Error notification"""
    type: Literal["error"] = "error"
    message: str = Field(..., description="Human-readable error message")


# ============================================================================
# MESSAGE UTILITIES
# ============================================================================

ClientMessage = Union[JoinTenantMessage, LeaveTenantMessage, PingMessage]


def parse_client_message(data: Dict[str, Any]) -> ClientMessage:
    """
    Parse a message sent by an agent connection based on its type field

    Raises:
        ValueError: If message type is unknown or the payload is invalid
    """
    message_map = {
        MessageType.JOIN_TENANT.value: JoinTenantMessage,
        MessageType.LEAVE_TENANT.value: LeaveTenantMessage,
        MessageType.PING.value: PingMessage,
    }

    if not isinstance(data, dict):
        raise ValueError("Message must be a JSON object")

    message_class = message_map.get(data.get("type"))
    if not message_class:
        raise ValueError(f"Unknown message type: {data.get('type')}")

    return message_class(**data)
