"""
Call Session State Machine
Drives the call an agent currently sees: idle -> ringing -> answered -> ended

Runs in the agent process, one instance per agent console. Local state is
the source of truth for the session; ledger writes that fail are surfaced
as PERSISTENCE_DRIFT notices and never roll the local state back.
"""
import logging
from collections import deque
from datetime import datetime
from typing import Callable, Deque, List, Optional

from callcrm.domain.errors import CallCRMError
from callcrm.domain.interfaces.call_ledger import CallLedger
from callcrm.domain.interfaces.contact_directory import ContactDirectory
from callcrm.domain.models.call_log import CallLogUpdate, CallStatus, utc_now
from callcrm.domain.models.realtime_messages import IncomingCallEvent
from callcrm.domain.models.session import (
    LiveCallSession,
    NoticeKind,
    NoticeLevel,
    SessionNotice,
    SessionState,
    TransitionResult,
)
from callcrm.domain.services.timers import AsyncioScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)

NoticeListener = Callable[[SessionNotice], None]

# How many recently handled call ids are remembered for replay detection
HANDLED_CALLS_MEMORY = 256


class CallSessionMachine:
    """
    State machine for a single agent's live call.

    At most one LiveCallSession exists at a time. Every operation returns a
    TransitionResult; notices are also pushed to registered listeners.
    """

    def __init__(
        self,
        ledger: CallLedger,
        directory: Optional[ContactDirectory] = None,
        scheduler: Optional[Scheduler] = None,
        now: Callable[[], datetime] = utc_now,
        missed_call_timeout_seconds: float = 30,
        tick_interval_seconds: float = 1.0,
        listeners: Optional[List[NoticeListener]] = None
    ):
        self.ledger = ledger
        self.directory = directory
        self.scheduler = scheduler or AsyncioScheduler()
        self._now = now
        self.missed_call_timeout_seconds = missed_call_timeout_seconds
        self.tick_interval_seconds = tick_interval_seconds
        self._listeners: List[NoticeListener] = list(listeners or [])

        self.session: Optional[LiveCallSession] = None
        self._missed_timer: Optional[TimerHandle] = None
        self._ticker: Optional[TimerHandle] = None
        self._in_flight = False
        self._handled: Deque[str] = deque(maxlen=HANDLED_CALLS_MEMORY)

    # =========================================================================
    # PROPERTIES / LISTENERS
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self.session.state if self.session else SessionState.IDLE

    @property
    def busy(self) -> bool:
        return self._in_flight

    def add_listener(self, listener: NoticeListener) -> None:
        self._listeners.append(listener)

    # =========================================================================
    # INCOMING
    # =========================================================================

    async def on_incoming_call(self, event: IncomingCallEvent) -> TransitionResult:
        """Idle -> Ringing for a newly published call."""
        call_log_id = event.call_log_id

        if call_log_id in self._handled or (self.session and self.session.call_log_id == call_log_id):
            logger.debug(f"Ignoring replayed incoming call {call_log_id}")
            return self._reject(
                NoticeKind.DUPLICATE_EVENT,
                f"Call {call_log_id} was already shown",
                level=NoticeLevel.INFO,
                call_log_id=call_log_id,
                emit=False,
            )

        if self.state != SessionState.IDLE:
            self._handled.append(call_log_id)
            logger.info(
                f"Call {call_log_id} from {event.caller_number} arrived while "
                f"call {self.session.call_log_id} is {self.state.value}"
            )
            return self._reject(
                NoticeKind.CALL_BLOCKED,
                f"Another call from {event.caller_number} arrived while a call is in progress",
                level=NoticeLevel.WARNING,
                call_log_id=call_log_id,
            )

        self._handled.append(call_log_id)
        self.session = LiveCallSession(
            call_log=event.call_log,
            contact=event.contact,
            state=SessionState.RINGING,
            ringing_since=self._now(),
        )
        self._missed_timer = self.scheduler.call_later(
            self.missed_call_timeout_seconds,
            lambda: self._expire(call_log_id),
        )

        caller = event.contact.name if event.contact else event.caller_number
        logger.info(f"Ringing: call {call_log_id} from {caller}")
        return self._accept([
            self._notice(
                NoticeKind.INCOMING_CALL,
                f"Incoming call from {caller}",
                level=NoticeLevel.INFO,
            )
        ])

    # =========================================================================
    # RINGING -> ANSWERED / ENDED
    # =========================================================================

    async def answer(self) -> TransitionResult:
        """Ringing -> Answered."""
        rejected = self._guard(SessionState.RINGING, "answer")
        if rejected:
            return rejected

        self._in_flight = True
        try:
            self._cancel_missed_timer()
            session = self.session
            session.answered_at = self._now()
            session.state = SessionState.ANSWERED
            session.elapsed_seconds = 0
            self._schedule_tick()

            notices = [self._notice(NoticeKind.CALL_ANSWERED, "Call answered", level=NoticeLevel.SUCCESS)]
            drift = await self._persist(
                "answer",
                self.ledger.update_status(
                    session.call_log_id,
                    CallStatus.ANSWERED,
                    CallLogUpdate(answered_at=session.answered_at),
                ),
            )
            if drift:
                notices.append(drift)
            return self._accept(notices)
        finally:
            self._in_flight = False

    async def decline(self) -> TransitionResult:
        """Ringing -> Ended (missed) by agent action."""
        rejected = self._guard(SessionState.RINGING, "decline")
        if rejected:
            return rejected
        return await self._miss("Call declined")

    async def _expire(self, call_log_id: str) -> Optional[TransitionResult]:
        """Missed-call timer callback."""
        session = self.session
        if session is None or session.call_log_id != call_log_id or session.state != SessionState.RINGING:
            return None
        logger.info(f"Call {call_log_id} not answered within {self.missed_call_timeout_seconds}s")
        return await self._miss("Call missed")

    async def _miss(self, message: str) -> TransitionResult:
        self._in_flight = True
        try:
            self._cancel_missed_timer()
            session = self.session
            session.ended_at = self._now()
            session.state = SessionState.ENDED
            session.end_reason = CallStatus.MISSED
            session.call_ended = True

            notices = [self._notice(NoticeKind.CALL_MISSED, message, level=NoticeLevel.WARNING)]
            drift = await self._persist(
                "missed",
                self.ledger.update_status(
                    session.call_log_id,
                    CallStatus.MISSED,
                    CallLogUpdate(ended_at=session.ended_at),
                ),
            )
            if drift:
                notices.append(drift)
            return self._accept(notices)
        finally:
            self._in_flight = False

    # =========================================================================
    # ANSWERED -> ENDED
    # =========================================================================

    async def end_call(self) -> TransitionResult:
        """Answered -> Ended (completed). Duration is floor(now - answered_at)."""
        rejected = self._guard(SessionState.ANSWERED, "end_call")
        if rejected:
            return rejected

        self._in_flight = True
        try:
            self._cancel_ticker()
            session = self.session
            session.ended_at = self._now()
            session.elapsed_seconds = session.compute_elapsed(session.ended_at)
            session.state = SessionState.ENDED
            session.end_reason = CallStatus.COMPLETED
            session.call_ended = True

            fields = {
                "ended_at": session.ended_at,
                "duration_seconds": session.elapsed_seconds,
            }
            if session.selected_address_id is not None:
                fields["selected_address_id"] = session.selected_address_id
            update = CallLogUpdate(**fields)

            notices = [
                self._notice(
                    NoticeKind.CALL_COMPLETED,
                    f"Call completed ({_format_duration(session.elapsed_seconds)})",
                    level=NoticeLevel.SUCCESS,
                )
            ]
            drift = await self._persist(
                "completed",
                self.ledger.update_status(session.call_log_id, CallStatus.COMPLETED, update),
            )
            if drift:
                notices.append(drift)
            return self._accept(notices)
        finally:
            self._in_flight = False

    def tick(self) -> int:
        """Recompute elapsed seconds from the wall clock."""
        session = self.session
        if session is None or session.answered_at is None:
            return 0
        session.elapsed_seconds = session.compute_elapsed(self._now())
        return session.elapsed_seconds

    # =========================================================================
    # SESSION DATA
    # =========================================================================

    async def select_address(self, address_id: str) -> TransitionResult:
        """Pick one of the contact's addresses for this call (ringing or answered)."""
        if self.state not in (SessionState.RINGING, SessionState.ANSWERED):
            return self._reject(
                NoticeKind.INVALID_TRANSITION,
                "An address can only be selected during a call",
            )

        session = self.session
        contact = session.contact
        address = contact.get_address(address_id) if contact else None
        if address is None:
            return self._reject(
                NoticeKind.INVALID_TRANSITION,
                "Address does not belong to this caller",
                call_log_id=session.call_log_id,
            )

        session.selected_address_id = address.id
        notices = [
            self._notice(
                NoticeKind.ADDRESS_SELECTED,
                f"Address selected: {address.label}",
                level=NoticeLevel.SUCCESS,
            )
        ]
        drift = await self._persist(
            "select_address",
            self.ledger.set_selected_address(session.call_log_id, address.id),
        )
        if drift:
            notices.append(drift)
        return self._accept(notices)

    async def create_contact_from_call(
        self,
        name: str,
        address: Optional[str] = None,
        label: str = "Home",
        comment: Optional[str] = None
    ) -> TransitionResult:
        """
        Promote the unknown caller on screen to a Contact.

        Creates the contact (and a primary address when given) then links
        the CallLog to it.
        """
        session = self.session
        if session is None:
            return self._reject(NoticeKind.INVALID_TRANSITION, "No call on screen")
        if session.contact is not None:
            return self._reject(
                NoticeKind.INVALID_TRANSITION,
                "Caller is already a contact",
                call_log_id=session.call_log_id,
            )
        if self.directory is None:
            return self._reject(
                NoticeKind.ERROR,
                "Contact directory is not available",
                level=NoticeLevel.ERROR,
                call_log_id=session.call_log_id,
            )
        if not name or not name.strip():
            return self._reject(
                NoticeKind.ERROR,
                "Name is required",
                level=NoticeLevel.ERROR,
                call_log_id=session.call_log_id,
            )

        caller_number = session.call_log.caller_number
        try:
            contact = await self.directory.create_contact(session.tenant_id, caller_number, name.strip())
        except CallCRMError as e:
            logger.warning(f"Could not create contact for {caller_number}: {e.message}")
            return self._reject(
                NoticeKind.ERROR,
                f"Failed to create caller: {e.message}",
                level=NoticeLevel.ERROR,
                call_log_id=session.call_log_id,
            )

        # From here on the contact exists; it is linked even if the address fails
        address_failure: Optional[SessionNotice] = None
        if address and address.strip():
            try:
                await self.directory.add_address(
                    contact.id,
                    label=label,
                    address=address.strip(),
                    phone=caller_number,
                    comment=comment,
                    is_primary=True,
                )
                contact = await self.directory.get_contact(session.tenant_id, contact.id) or contact
            except CallCRMError as e:
                logger.warning(f"Could not add address for contact {contact.id}: {e.message}")
                address_failure = self._notice(
                    NoticeKind.ERROR,
                    f"Caller created but the address was not saved: {e.message}",
                    level=NoticeLevel.ERROR,
                )

        session.contact = contact
        session.call_log.contact_id = contact.id
        notices = [
            self._notice(
                NoticeKind.CONTACT_CREATED,
                f"Caller {contact.name} created",
                level=NoticeLevel.SUCCESS,
            )
        ]
        if address_failure:
            notices.append(address_failure)
        drift = await self._persist("link_contact", self.ledger.link_contact(session.call_log_id, contact.id))
        if drift:
            notices.append(drift)
        return self._accept(notices)

    # =========================================================================
    # ENDED -> IDLE / LIFECYCLE
    # =========================================================================

    async def dismiss(self) -> TransitionResult:
        """Ended -> Idle; the session is destroyed."""
        rejected = self._guard(SessionState.ENDED, "dismiss")
        if rejected:
            return rejected
        self._clear()
        return self._accept([])

    def close(self) -> None:
        """Cancel every pending timer. The session itself is left as is."""
        self._cancel_missed_timer()
        self._cancel_ticker()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _guard(self, required: SessionState, operation: str) -> Optional[TransitionResult]:
        if self._in_flight:
            return self._reject(
                NoticeKind.TRANSITION_IN_FLIGHT,
                "Please wait, the previous action is still being saved",
                level=NoticeLevel.INFO,
            )
        if self.state != required:
            logger.debug(f"Rejected {operation} in state {self.state.value}")
            return self._reject(
                NoticeKind.INVALID_TRANSITION,
                f"Cannot {operation.replace('_', ' ')} while {self.state.value}",
            )
        return None

    async def _persist(self, operation: str, write) -> Optional[SessionNotice]:
        """Await a ledger write; failure becomes a drift notice."""
        call_log_id = self.session.call_log_id if self.session else None
        try:
            await write
            return None
        except Exception as e:
            logger.error(f"Ledger write '{operation}' failed for call {call_log_id}: {e}", exc_info=True)
            return self._notice(
                NoticeKind.PERSISTENCE_DRIFT,
                "Call status could not be saved; the screen shows the latest state",
                level=NoticeLevel.WARNING,
                call_log_id=call_log_id,
            )

    def _schedule_tick(self) -> None:
        self._cancel_ticker()
        self._ticker = self.scheduler.call_later(self.tick_interval_seconds, self._on_tick)

    def _on_tick(self) -> None:
        self._ticker = None
        if self.state != SessionState.ANSWERED:
            return
        self.tick()
        self._schedule_tick()

    def _cancel_missed_timer(self) -> None:
        if self._missed_timer is not None:
            self._missed_timer.cancel()
            self._missed_timer = None

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _clear(self) -> None:
        self.close()
        self.session = None

    def _notice(
        self,
        kind: NoticeKind,
        message: str,
        level: NoticeLevel = NoticeLevel.WARNING,
        call_log_id: Optional[str] = None
    ) -> SessionNotice:
        if call_log_id is None and self.session is not None:
            call_log_id = self.session.call_log_id
        return SessionNotice(kind=kind, level=level, message=message, call_log_id=call_log_id)

    def _accept(self, notices: List[SessionNotice]) -> TransitionResult:
        self._emit(notices)
        return TransitionResult(accepted=True, state=self.state, notices=notices)

    def _reject(
        self,
        kind: NoticeKind,
        message: str,
        level: NoticeLevel = NoticeLevel.WARNING,
        call_log_id: Optional[str] = None,
        emit: bool = True
    ) -> TransitionResult:
        notice = self._notice(kind, message, level=level, call_log_id=call_log_id)
        if emit:
            self._emit([notice])
        return TransitionResult(accepted=False, state=self.state, notices=[notice], reason=kind)

    def _emit(self, notices: List[SessionNotice]) -> None:
        for notice in notices:
            for listener in list(self._listeners):
                try:
                    listener(notice)
                except Exception as e:
                    logger.error(f"Notice listener failed: {e}", exc_info=True)


def _format_duration(seconds: int) -> str:
    minutes, secs = divmod(seconds, 60)
    return f"{minutes}:{secs:02d}"
