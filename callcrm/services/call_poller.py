"""
Call Log Poller
Degraded-mode delivery: agents pick new calls up from the ledger when the
real-time channel is unavailable
"""
import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Callable, Deque, List, Optional

from callcrm.domain.interfaces.call_ledger import CallLedger
from callcrm.domain.interfaces.contact_directory import ContactDirectory
from callcrm.domain.models.call_log import CallStatus, utc_now
from callcrm.domain.models.realtime_messages import IncomingCallEvent
from callcrm.domain.services.call_session_machine import CallSessionMachine

logger = logging.getLogger(__name__)

# How many offered call ids are remembered so a call is offered once
OFFERED_CALLS_MEMORY = 256


class CallLogPoller:
    """
    Feeds incoming calls to the state machine.

    Each poll reads every call still in `incoming` status inside the
    missed-call window; older ones were already missed. Calls are offered
    once, by id, so arrival order does not matter.
    """

    def __init__(
        self,
        ledger: CallLedger,
        directory: Optional[ContactDirectory],
        tenant_id: str,
        machine: CallSessionMachine,
        interval_seconds: float = 5,
        now: Callable[[], datetime] = utc_now
    ):
        self.ledger = ledger
        self.directory = directory
        self.tenant_id = tenant_id
        self.machine = machine
        self.interval_seconds = interval_seconds
        self._now = now
        self._offered: Deque[str] = deque(maxlen=OFFERED_CALLS_MEMORY)
        self._running = False

    async def poll_once(self) -> List[IncomingCallEvent]:
        """One poll cycle. Returns the events offered to the machine."""
        max_age = timedelta(seconds=self.machine.missed_call_timeout_seconds)
        logs = await self.ledger.list_since(
            self.tenant_id,
            since=self._now() - max_age,
            status=CallStatus.INCOMING,
        )

        offered: List[IncomingCallEvent] = []

        for call_log in logs:
            if call_log.id in self._offered:
                continue
            self._offered.append(call_log.id)

            contact = None
            if call_log.contact_id and self.directory is not None:
                try:
                    contact = await self.directory.get_contact(self.tenant_id, call_log.contact_id)
                except Exception as e:
                    logger.warning(f"Could not load contact {call_log.contact_id}: {e}")

            event = IncomingCallEvent.from_call_log(call_log, contact, timestamp=call_log.timestamp)
            await self.machine.on_incoming_call(event)
            offered.append(event)

        return offered

    async def run(self) -> None:
        """Poll until stop() is called."""
        self._running = True
        logger.info(f"Polling call logs for tenant {self.tenant_id} every {self.interval_seconds}s")
        while self._running:
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Call log poll failed: {e}")
            await asyncio.sleep(self.interval_seconds)

    def stop(self) -> None:
        self._running = False
