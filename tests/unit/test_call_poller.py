"""
Unit tests for the degraded-mode call log poller
"""
import pytest
from datetime import timedelta

from callcrm.domain.models.call_log import CallLogCreate, CallStatus
from callcrm.domain.models.session import SessionState
from callcrm.domain.services.call_session_machine import CallSessionMachine
from callcrm.services.call_poller import CallLogPoller


@pytest.fixture
def machine(ledger, directory, scheduler, clock):
    return CallSessionMachine(ledger, directory=directory, scheduler=scheduler, now=clock)


async def create_call(ledger, clock, tenant_id="T1", contact_id=None, offset=1):
    return await ledger.create(CallLogCreate(
        tenant_id=tenant_id,
        contact_id=contact_id,
        caller_number="+306912345678",
        timestamp=clock() + timedelta(seconds=offset),
    ))


class TestCallLogPoller:
    """Tests for CallLogPoller.poll_once"""

    @pytest.mark.asyncio
    async def test_new_incoming_call_starts_ringing(self, ledger, directory, machine, clock):
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        contact = await directory.create_contact("T1", "+306912345678", "Maria")
        call = await create_call(ledger, clock, contact_id=contact.id)
        clock.advance(2)

        offered = await poller.poll_once()

        assert [e.call_log_id for e in offered] == [call.id]
        assert offered[0].contact.name == "Maria"
        assert machine.state == SessionState.RINGING

    @pytest.mark.asyncio
    async def test_calls_are_offered_once(self, ledger, directory, machine, clock):
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        await create_call(ledger, clock)
        clock.advance(2)

        await poller.poll_once()
        assert await poller.poll_once() == []

    @pytest.mark.asyncio
    async def test_other_tenants_ignored(self, ledger, directory, machine, clock):
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        await create_call(ledger, clock, tenant_id="T2")
        clock.advance(2)

        assert await poller.poll_once() == []
        assert machine.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_stale_calls_skipped(self, ledger, directory, machine, clock):
        """Test calls older than the missed-call timeout are not shown"""
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        await create_call(ledger, clock)
        clock.advance(120)

        assert await poller.poll_once() == []
        assert machine.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_only_incoming_status(self, ledger, directory, machine, clock):
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        call = await create_call(ledger, clock)
        await ledger.update_status(call.id, CallStatus.ANSWERED)
        clock.advance(2)

        assert await poller.poll_once() == []

    @pytest.mark.asyncio
    async def test_call_with_earlier_timestamp_still_offered(self, ledger, directory, machine, clock):
        """Test a call stored after another but stamped earlier by the provider is not lost"""
        poller = CallLogPoller(ledger, directory, "T1", machine, now=clock)
        first = await create_call(ledger, clock, offset=1)
        clock.advance(2)
        assert [e.call_log_id for e in await poller.poll_once()] == [first.id]
        await machine.decline()
        await machine.dismiss()

        second = await create_call(ledger, clock, offset=-3)
        offered = await poller.poll_once()

        assert [e.call_log_id for e in offered] == [second.id]
        assert machine.state == SessionState.RINGING
        assert machine.session.call_log_id == second.id
