"""
Unit tests for the Call Correlation Engine
"""
import asyncio
import pytest
from unittest.mock import AsyncMock

from callcrm.domain.errors import DependencyError, ValidationError
from callcrm.domain.interfaces.event_publisher import EventPublisher
from callcrm.domain.models.call_log import CallStatus
from callcrm.domain.services.call_correlation import CallCorrelationEngine
from callcrm.domain.services.presence_registry import PresenceRegistry
from callcrm.domain.services.webhook_dedup import WebhookDeduplicator


class RecordingPublisher(EventPublisher):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []

    async def publish(self, tenant_id, event):
        if self.fail:
            raise ConnectionError("relay down")
        self.published.append((tenant_id, event))
        return 1


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def engine(directory, ledger, publisher, clock):
    return CallCorrelationEngine(directory, ledger, publisher, now=clock)


class TestCorrelate:
    """Tests for CallCorrelationEngine.correlate"""

    @pytest.mark.asyncio
    async def test_known_caller(self, engine, directory, ledger, publisher):
        """Test a known number links the call log to the contact"""
        contact = await directory.create_contact("T1", "+306912345678", "Maria")
        await directory.add_address(contact.id, "Home", "1 Main St")

        result = await engine.correlate("T1", {"caller_id": "30 691 234 5678", "call_type": "incoming"})

        assert result.contact_found is True
        assert result.contact.id == contact.id
        log = await ledger.get(result.call_log_id)
        assert log.contact_id == contact.id
        assert log.status == CallStatus.INCOMING
        assert log.caller_number == "+306912345678"
        assert log.call_type == "incoming"

        tenant_id, event = publisher.published[0]
        assert tenant_id == "T1"
        assert event.caller_name == "Maria"
        assert event.address_count == 1
        assert result.delivered == 1

    @pytest.mark.asyncio
    async def test_unknown_caller(self, engine, ledger):
        result = await engine.correlate("T1", {"caller_id": "+300000000"})

        assert result.contact_found is False
        assert (await ledger.get(result.call_log_id)).contact_id is None
        assert result.event.caller_name is None

    @pytest.mark.asyncio
    async def test_contact_in_other_tenant_not_matched(self, engine, directory):
        """Test lookup never crosses tenants"""
        await directory.create_contact("T2", "+306912345678", "Other tenant")

        result = await engine.correlate("T1", {"caller_id": "+306912345678"})

        assert result.contact_found is False

    @pytest.mark.asyncio
    async def test_raw_payload_stored_verbatim(self, engine, ledger):
        payload = {"caller_id": "+301", "vendor": {"line": 3}, "tags": ["a", "b"]}

        result = await engine.correlate("T1", payload)

        assert (await ledger.get(result.call_log_id)).raw_payload == payload

    @pytest.mark.asyncio
    async def test_lookup_failure_still_creates_log(self, directory, ledger, publisher, clock):
        """Test a throwing contact lookup is treated as an unknown caller"""
        directory.find_active_by_phone = AsyncMock(side_effect=DependencyError("db timeout"))
        engine = CallCorrelationEngine(directory, ledger, publisher, now=clock)

        result = await engine.correlate("T1", {"caller_id": "+306912345678"})

        assert result.call_log_id
        assert result.contact is None
        assert result.lookup_failed is True
        assert (await ledger.get(result.call_log_id)).contact_id is None
        assert len(publisher.published) == 1

    @pytest.mark.asyncio
    async def test_ledger_failure_raises_dependency_error(self, directory, ledger, publisher):
        ledger.create = AsyncMock(side_effect=ConnectionError("store unreachable"))
        engine = CallCorrelationEngine(directory, ledger, publisher)

        with pytest.raises(DependencyError):
            await engine.correlate("T1", {"caller_id": "+301"})
        assert publisher.published == []

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_fail_correlation(self, directory, ledger, clock):
        engine = CallCorrelationEngine(directory, ledger, RecordingPublisher(fail=True), now=clock)

        result = await engine.correlate("T1", {"caller_id": "+301"})

        assert result.delivered == 0
        assert await ledger.get(result.call_log_id) is not None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{}, {"caller_id": None}, {"caller_id": "   "}])
    async def test_missing_caller_id(self, engine, ledger, payload):
        with pytest.raises(ValidationError, match="caller_id"):
            await engine.correlate("T1", payload)
        assert ledger.all() == []

    @pytest.mark.asyncio
    async def test_missing_tenant(self, engine):
        with pytest.raises(ValidationError):
            await engine.correlate("", {"caller_id": "+301"})

    @pytest.mark.asyncio
    async def test_provided_timestamp_is_used(self, engine, ledger):
        result = await engine.correlate("T1", {"caller_id": "+301", "timestamp": "2024-03-01T10:00:00Z"})

        log = await ledger.get(result.call_log_id)
        assert log.timestamp.isoformat() == "2024-03-01T10:00:00+00:00"

    @pytest.mark.asyncio
    async def test_bad_timestamp_falls_back_to_now(self, engine, ledger, clock):
        result = await engine.correlate("T1", {"caller_id": "+301", "timestamp": "yesterday-ish"})

        assert (await ledger.get(result.call_log_id)).timestamp == clock()

    @pytest.mark.asyncio
    async def test_degenerate_caller_id_is_unknown(self, engine, ledger, directory):
        """Test a caller id with no digits is logged as '+' and never matched"""
        result = await engine.correlate("T1", {"caller_id": "anonymous"})

        assert result.contact is None
        assert (await ledger.get(result.call_log_id)).caller_number == "+"

    @pytest.mark.asyncio
    async def test_event_reaches_registered_agents(self, directory, ledger, clock, connection_factory):
        """Test correlation through the real registry"""
        registry = PresenceRegistry()
        await registry.start()
        agent = connection_factory()
        registry.register("T1", agent)
        await directory.create_contact("T1", "+306912345678", "Maria")
        engine = CallCorrelationEngine(directory, ledger, registry, now=clock)

        try:
            result = await engine.correlate("T1", {"caller_id": "+306912345678"})
        finally:
            await registry.stop()

        assert result.delivered == 1
        data = agent.sent[0]["data"]
        assert data["callLogId"] == result.call_log_id
        assert data["callerFound"] is True
        assert data["contact"]["name"] == "Maria"


class TestCorrelateDeduplication:
    """Tests for webhook_id idempotency"""

    @pytest.mark.asyncio
    async def test_retry_returns_original_call(self, directory, ledger, publisher, clock):
        engine = CallCorrelationEngine(
            directory, ledger, publisher, deduplicator=WebhookDeduplicator(60), now=clock
        )
        payload = {"caller_id": "+301", "webhook_id": "evt-1"}

        first = await engine.correlate("T1", payload)
        second = await engine.correlate("T1", dict(payload))

        assert second.duplicate is True
        assert second.call_log_id == first.call_log_id
        assert second.event.duplicate is True
        assert len(ledger.all()) == 1
        assert len(publisher.published) == 1

    @pytest.mark.asyncio
    async def test_concurrent_retries_create_one_log(self, directory, ledger, publisher, clock):
        engine = CallCorrelationEngine(
            directory, ledger, publisher, deduplicator=WebhookDeduplicator(60), now=clock
        )
        payload = {"caller_id": "+301", "webhook_id": "evt-1"}

        results = await asyncio.gather(*(engine.correlate("T1", dict(payload)) for _ in range(5)))

        assert len({r.call_log_id for r in results}) == 1
        assert sum(1 for r in results if not r.duplicate) == 1
        assert len(ledger.all()) == 1

    @pytest.mark.asyncio
    async def test_distinct_webhook_ids_are_separate_calls(self, directory, ledger, publisher, clock):
        engine = CallCorrelationEngine(
            directory, ledger, publisher, deduplicator=WebhookDeduplicator(60), now=clock
        )

        await engine.correlate("T1", {"caller_id": "+301", "webhook_id": "evt-1"})
        await engine.correlate("T1", {"caller_id": "+301", "webhook_id": "evt-2"})

        assert len(ledger.all()) == 2
