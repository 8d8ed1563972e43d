"""
Call Log Domain Models
Durable record of one inbound call event and its lifecycle
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum


class CallStatus(str, Enum):
    """Call log status"""
    INCOMING = "incoming"
    ANSWERED = "answered"
    MISSED = "missed"
    COMPLETED = "completed"


class CallDirection(str, Enum):
    """Call direction (only inbound calls are correlated)"""
    INBOUND = "inbound"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CallLog(BaseModel):
    """
    Call log row.

    Created exactly once per accepted webhook event, then mutated in place
    (status, timestamps, duration, selected address). Never deleted.
    """
    id: str
    tenant_id: str
    contact_id: Optional[str] = Field(None, description="None means unknown caller")
    caller_number: str = Field(..., description="Normalized caller number")
    status: CallStatus = CallStatus.INCOMING
    direction: CallDirection = CallDirection.INBOUND
    timestamp: datetime = Field(default_factory=utc_now, description="Arrival time")
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: int = Field(default=0, ge=0)
    selected_address_id: Optional[str] = None
    webhook_id: Optional[str] = Field(None, description="Provider event id, used for dedup")
    source: Optional[str] = None
    call_type: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict, description="Verbatim provider payload")

    model_config = ConfigDict(extra="ignore")


class CallLogCreate(BaseModel):
    """Fields supplied when the correlation engine inserts a call log"""
    tenant_id: str
    contact_id: Optional[str] = None
    caller_number: str
    timestamp: datetime
    webhook_id: Optional[str] = None
    source: Optional[str] = None
    call_type: Optional[str] = None
    raw_payload: Dict[str, Any] = Field(default_factory=dict)


class CallLogUpdate(BaseModel):
    """Transition metadata persisted alongside a status change"""
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = Field(None, ge=0)
    selected_address_id: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        """Only the fields that were explicitly set"""
        return self.model_dump(exclude_unset=True)
