"""
Event Publisher Interface
Delivery of tenant-scoped incoming-call events to live agent connections
"""
from abc import ABC, abstractmethod
import logging

from callcrm.domain.models.realtime_messages import IncomingCallEvent

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    """Publishes an event to every live connection of one tenant and no others."""

    @abstractmethod
    async def publish(self, tenant_id: str, event: IncomingCallEvent) -> int:
        """
        Deliver the event.

        Returns:
            Number of connections the event was delivered to
        """
        pass


class NullPublisher(EventPublisher):
    """
    Publisher used where no real-time relay is reachable.

    Agents then pick calls up through ledger polling (degraded mode).
    """

    async def publish(self, tenant_id: str, event: IncomingCallEvent) -> int:
        logger.debug(
            f"No real-time relay configured; call {event.call_log_id} "
            f"for tenant {tenant_id} left for polling"
        )
        return 0
