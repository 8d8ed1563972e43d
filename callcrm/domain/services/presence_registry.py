"""
Presence Registry
Tenant-scoped fan-out of incoming-call events to live agent connections

A connection is any object with `async send_json(dict)` (a FastAPI WebSocket
in production). Deliveries are serialized through a single dispatch loop so
every connection of a tenant sees events in publish order.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from callcrm.domain.interfaces.event_publisher import EventPublisher
from callcrm.domain.models.realtime_messages import IncomingCallEvent, IncomingCallMessage

logger = logging.getLogger(__name__)

# A connection that cannot take a message within this many seconds is dropped
SEND_TIMEOUT_SECONDS = 5.0


class PresenceRegistry(EventPublisher):
    """
    Tracks which connections are subscribed to which tenant.

    Usage:
        registry = PresenceRegistry()
        await registry.start()
        registry.register("acme", websocket)
        delivered = await registry.publish("acme", event)
        await registry.stop()
    """

    def __init__(self, send_timeout_seconds: float = SEND_TIMEOUT_SECONDS):
        self.send_timeout_seconds = send_timeout_seconds
        self._tenants: Dict[str, Set[Any]] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._dispatcher: Optional[asyncio.Task] = None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._queue = asyncio.Queue()
        self._dispatcher = asyncio.create_task(self._dispatch_loop())
        logger.info("Presence registry started")

    async def stop(self) -> None:
        if self._dispatcher is None:
            return
        self._dispatcher.cancel()
        try:
            await self._dispatcher
        except asyncio.CancelledError:
            pass

        # Anything still queued will never be delivered
        while self._queue is not None and not self._queue.empty():
            _, _, future = self._queue.get_nowait()
            if not future.done():
                future.set_result(0)

        self._dispatcher = None
        self._queue = None
        logger.info("Presence registry stopped")

    @property
    def running(self) -> bool:
        return self._dispatcher is not None

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def register(self, tenant_id: str, connection: Any) -> None:
        """Subscribe connection to tenant. Registering twice is a no-op."""
        self._tenants.setdefault(tenant_id, set()).add(connection)
        logger.info(
            f"Connection joined tenant {tenant_id} "
            f"({len(self._tenants[tenant_id])} connected)"
        )

    def unregister(self, connection: Any, tenant_id: Optional[str] = None) -> None:
        """
        Remove connection from one tenant, or from every tenant when tenant_id is None.

        Idempotent.
        """
        tenant_ids = [tenant_id] if tenant_id is not None else list(self._tenants)
        for tid in tenant_ids:
            members = self._tenants.get(tid)
            if not members or connection not in members:
                continue
            members.discard(connection)
            logger.info(f"Connection left tenant {tid} ({len(members)} connected)")
            if not members:
                del self._tenants[tid]

    def is_registered(self, connection: Any, tenant_id: Optional[str] = None) -> bool:
        if tenant_id is not None:
            return connection in self._tenants.get(tenant_id, ())
        return any(connection in members for members in self._tenants.values())

    def connection_counts(self) -> Dict[str, int]:
        """Live connection count per tenant"""
        return {tid: len(members) for tid, members in self._tenants.items() if members}

    # =========================================================================
    # PUBLISH
    # =========================================================================

    async def publish(self, tenant_id: str, event: IncomingCallEvent) -> int:
        """
        Deliver event to every live connection of tenant_id.

        Returns the number of connections that received it. Waits until
        delivery of this event has finished.
        """
        if self._queue is None:
            raise RuntimeError("Presence registry is not started")

        future = asyncio.get_running_loop().create_future()
        await self._queue.put((tenant_id, event, future))
        return await future

    async def _dispatch_loop(self) -> None:
        while True:
            tenant_id, event, future = await self._queue.get()
            try:
                delivered = await self._deliver(tenant_id, event)
                if not future.done():
                    future.set_result(delivered)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_result(0)
                raise
            except Exception as e:
                logger.error(f"Delivery to tenant {tenant_id} failed: {e}", exc_info=True)
                if not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    async def _deliver(self, tenant_id: str, event: IncomingCallEvent) -> int:
        members = self._tenants.get(tenant_id)
        if not members:
            logger.info(f"No connected agents for tenant {tenant_id}; call {event.call_log_id} not pushed")
            return 0

        message = IncomingCallMessage(data=event).to_wire()
        snapshot: List[Any] = list(members)
        delivered = 0

        for connection in snapshot:
            # May have left while earlier sends were awaited
            if not self.is_registered(connection, tenant_id):
                continue
            if await self._send(tenant_id, connection, message):
                delivered += 1

        logger.info(f"Incoming call {event.call_log_id} delivered to {delivered} connection(s) of tenant {tenant_id}")
        return delivered

    async def _send(self, tenant_id: str, connection: Any, message: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(connection.send_json(message), timeout=self.send_timeout_seconds)
            return True
        except asyncio.TimeoutError:
            logger.warning(
                f"Dropping stalled connection from tenant {tenant_id}: "
                f"send took longer than {self.send_timeout_seconds}s"
            )
            self.unregister(connection)
            return False
        except Exception as e:
            logger.warning(f"Dropping dead connection from tenant {tenant_id}: {e}")
            self.unregister(connection)
            return False

    def tenant_snapshot(self) -> List[Tuple[str, int]]:
        """(tenant_id, count) pairs sorted by tenant, for health output"""
        return sorted(self.connection_counts().items())
