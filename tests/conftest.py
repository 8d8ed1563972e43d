"""
Shared test fixtures: a controllable clock and scheduler, in-memory stores,
and fake agent connections.
"""
import inspect
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List

import pytest

from callcrm.domain.models.call_log import CallLog
from callcrm.domain.models.contact import Contact
from callcrm.domain.models.realtime_messages import IncomingCallEvent
from callcrm.domain.services.timers import Scheduler, TimerHandle
from callcrm.infrastructure.storage.memory_store import InMemoryCallLedger, InMemoryContactDirectory


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FakeTimerHandle(TimerHandle):

    def __init__(self, due: datetime, callback: Callable[[], Any]):
        self.due = due
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class FakeScheduler(Scheduler):
    """Fires timers in due order as the fake clock is advanced."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.timers: List[FakeTimerHandle] = []

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        handle = FakeTimerHandle(self.clock() + timedelta(seconds=delay), callback)
        self.timers.append(handle)
        return handle

    @property
    def pending(self) -> List[FakeTimerHandle]:
        return [t for t in self.timers if not t.cancelled]

    async def advance(self, seconds: float) -> None:
        target = self.clock() + timedelta(seconds=seconds)
        while True:
            due = [t for t in self.pending if t.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.timers.remove(timer)
            self.clock.current = max(self.clock.current, timer.due)
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self.clock.current = target


class FakeConnection:
    """Agent connection that records what it was sent."""

    def __init__(self, name: str = "conn", fail: bool = False):
        self.name = name
        self.fail = fail
        self.sent: List[dict] = []

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("Cannot call 'send' once a close message has been sent")
        self.sent.append(data)

    def __repr__(self) -> str:
        return f"FakeConnection({self.name})"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler(clock):
    return FakeScheduler(clock)


@pytest.fixture
def directory(clock):
    return InMemoryContactDirectory(now=clock)


@pytest.fixture
def ledger():
    return InMemoryCallLedger()


@pytest.fixture
def connection_factory():
    return FakeConnection


@pytest.fixture
def make_event(clock):
    """Build an IncomingCallEvent without going through the engine."""
    counter = {"n": 0}

    def _make(tenant_id: str = "T1", caller_number: str = "+306912345678", contact: Contact = None, call_log_id: str = None):
        counter["n"] += 1
        call_log = CallLog(
            id=call_log_id or f"call-{counter['n']}",
            tenant_id=tenant_id,
            contact_id=contact.id if contact else None,
            caller_number=caller_number,
            timestamp=clock(),
        )
        return IncomingCallEvent.from_call_log(call_log, contact, timestamp=clock())

    return _make
