"""
Live Call Session Models
Defines LiveCallSession, SessionState and the notices emitted by the session state machine
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from enum import Enum

from callcrm.domain.models.call_log import CallLog, CallStatus
from callcrm.domain.models.contact import Contact


class SessionState(str, Enum):
    """Live call session state"""
    IDLE = "idle"              # No call on screen
    RINGING = "ringing"        # Incoming call shown, not answered yet
    ANSWERED = "answered"      # Agent is on the call, ticker running
    ENDED = "ended"            # Summary shown until the agent dismisses it


class NoticeLevel(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class NoticeKind(str, Enum):
    """What a notice is about; the presentation layer picks how to render it"""
    INCOMING_CALL = "incoming_call"
    CALL_BLOCKED = "call_blocked"            # second call while one is active
    DUPLICATE_EVENT = "duplicate_event"
    CALL_ANSWERED = "call_answered"
    CALL_MISSED = "call_missed"
    CALL_COMPLETED = "call_completed"
    ADDRESS_SELECTED = "address_selected"
    CONTACT_CREATED = "contact_created"
    PERSISTENCE_DRIFT = "persistence_drift"  # local state moved on, ledger write failed
    TRANSITION_IN_FLIGHT = "transition_in_flight"
    INVALID_TRANSITION = "invalid_transition"
    ERROR = "error"


class SessionNotice(BaseModel):
    """Non-blocking, toast-style notification"""
    kind: NoticeKind
    level: NoticeLevel = NoticeLevel.INFO
    message: str
    call_log_id: Optional[str] = None


class TransitionResult(BaseModel):
    """Outcome of one state machine operation"""
    accepted: bool
    state: SessionState
    notices: List[SessionNotice] = Field(default_factory=list)
    reason: Optional[NoticeKind] = Field(None, description="Why the operation was rejected")

    @property
    def drifted(self) -> bool:
        return any(n.kind == NoticeKind.PERSISTENCE_DRIFT for n in self.notices)


class LiveCallSession(BaseModel):
    """
    The call currently displayed to an agent.

    Lives only in the agent process memory; at most one exists per
    state machine. All timing is kept as absolute wall-clock instants so
    elapsed time can always be recomputed.
    """

    # ========== Identity ==========
    call_log: CallLog
    contact: Optional[Contact] = None

    # ========== Lifecycle ==========
    state: SessionState = SessionState.RINGING
    ringing_since: datetime
    answered_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    end_reason: Optional[CallStatus] = Field(None, description="missed or completed")

    # ========== UI-only fields ==========
    elapsed_seconds: int = Field(default=0, ge=0, description="Last rendered ticker value")
    selected_address_id: Optional[str] = None
    call_ended: bool = False

    @property
    def call_log_id(self) -> str:
        return self.call_log.id

    @property
    def tenant_id(self) -> str:
        return self.call_log.tenant_id

    def compute_elapsed(self, now: datetime) -> int:
        """Whole seconds on the call, recomputed from answered_at"""
        if self.answered_at is None:
            return 0
        end = self.ended_at or now
        return max(0, int((end - self.answered_at).total_seconds()))
