"""Domain models"""

# Contacts
from .contact import (
    Address,
    Contact,
)

# Call logs
from .call_log import (
    CallStatus,
    CallDirection,
    CallLog,
    CallLogCreate,
    CallLogUpdate,
)

# Real-time channel messages
from .realtime_messages import (
    MessageType,
    IncomingCallData,
    IncomingCallEvent,
    JoinTenantMessage,
    LeaveTenantMessage,
    PingMessage,
    JoinedMessage,
    LeftMessage,
    IncomingCallMessage,
    PongMessage,
    ErrorMessage,
    parse_client_message,
)

# Live session models
from .session import (
    SessionState,
    NoticeLevel,
    NoticeKind,
    SessionNotice,
    TransitionResult,
    LiveCallSession,
)

__all__ = [
    # Contacts
    "Address",
    "Contact",
    # Call logs
    "CallStatus",
    "CallDirection",
    "CallLog",
    "CallLogCreate",
    "CallLogUpdate",
    # Real-time messages
    "MessageType",
    "IncomingCallData",
    "IncomingCallEvent",
    "JoinTenantMessage",
    "LeaveTenantMessage",
    "PingMessage",
    "JoinedMessage",
    "LeftMessage",
    "IncomingCallMessage",
    "PongMessage",
    "ErrorMessage",
    "parse_client_message",
    # Live sessions
    "SessionState",
    "NoticeLevel",
    "NoticeKind",
    "SessionNotice",
    "TransitionResult",
    "LiveCallSession",
]
