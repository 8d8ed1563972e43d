"""
HTTP Relay Publisher
Forwards incoming-call events from a stateless webhook invocation to the
real-time server that holds the agent connections
"""
import logging
from typing import Optional

import httpx

from callcrm.domain.interfaces.event_publisher import EventPublisher
from callcrm.domain.models.realtime_messages import IncomingCallEvent

logger = logging.getLogger(__name__)

RELAY_SECRET_HEADER = "X-Relay-Secret"


class RelayPublishError(Exception):
    """Relay server rejected or could not receive the event."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class HttpRelayPublisher(EventPublisher):
    """
    Publishes by POSTing the event to `{base_url}/realtime/publish/{tenant_id}`.

    The relay answers with the number of connections it delivered to.
    """

    def __init__(
        self,
        base_url: str,
        secret: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.secret = secret
        self.timeout = timeout
        self._transport = transport

    async def publish(self, tenant_id: str, event: IncomingCallEvent) -> int:
        url = f"{self.base_url}/realtime/publish/{tenant_id}"
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers[RELAY_SECRET_HEADER] = self.secret

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url,
                    json=event.model_dump(mode="json", by_alias=True),
                    headers=headers,
                )
        except httpx.HTTPError as e:
            raise RelayPublishError(f"Relay unreachable: {e}") from e

        if response.status_code != 200:
            logger.error(f"Relay publish failed ({response.status_code}): {response.text}")
            raise RelayPublishError(
                f"Relay publish failed: {response.status_code}",
                status_code=response.status_code
            )

        delivered = response.json().get("delivered", 0)
        logger.info(f"Relayed call {event.call_log_id} to tenant {tenant_id} ({delivered} delivered)")
        return delivered
