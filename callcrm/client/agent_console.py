"""
Agent Console
Headless agent-side client: subscribes to a tenant's call channel and feeds
incoming calls into the call session state machine

Reconnects with exponential backoff; once attempts are exhausted it falls
back to polling the call ledger when a poller is configured.
"""
import asyncio
import json
import logging
from typing import Any, Dict, Optional

import websockets

from callcrm.domain.models.realtime_messages import (
    IncomingCallEvent,
    JoinTenantMessage,
    MessageType,
)
from callcrm.domain.models.session import TransitionResult
from callcrm.domain.services.call_session_machine import CallSessionMachine
from callcrm.services.call_poller import CallLogPoller

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 10


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before reconnect attempt number `attempt` (0-based)."""
    return min(2 ** attempt, MAX_BACKOFF_SECONDS)


class AgentConsole:
    """
    Keeps one agent's call channel subscription alive.

    Usage:
        console = AgentConsole("ws://crm:8000/ws/calls", "acme", machine, poller)
        await console.run()
    """

    def __init__(
        self,
        ws_url: str,
        tenant_id: str,
        machine: CallSessionMachine,
        poller: Optional[CallLogPoller] = None,
        max_reconnect_attempts: int = 5
    ):
        self.ws_url = ws_url
        self.tenant_id = tenant_id
        self.machine = machine
        self.poller = poller
        self.max_reconnect_attempts = max_reconnect_attempts

        self.connected = False
        self.joined = False
        self.polling = False
        self._stopped = False

    async def handle_message(self, data: Dict[str, Any]) -> Optional[TransitionResult]:
        """Dispatch one server message. Returns the machine result for incoming calls."""
        msg_type = data.get("type")

        if msg_type == MessageType.JOINED.value:
            self.joined = True
            logger.info(f"Joined call channel of tenant {data.get('tenant_id')}")

        elif msg_type == MessageType.LEFT.value:
            self.joined = False

        elif msg_type == MessageType.INCOMING_CALL.value:
            event = IncomingCallEvent.model_validate(data.get("data") or {})
            if event.company_id != self.tenant_id:
                logger.warning(f"Ignoring call {event.call_log_id} for foreign tenant {event.company_id}")
                return None
            return await self.machine.on_incoming_call(event)

        elif msg_type == MessageType.ERROR.value:
            logger.error(f"Call channel error: {data.get('message')}")

        elif msg_type == MessageType.PONG.value:
            logger.debug("Call channel pong")

        else:
            logger.debug(f"Ignoring unknown message type: {msg_type}")

        return None

    async def _listen(self) -> None:
        async with websockets.connect(self.ws_url, ping_interval=30) as ws:
            self.connected = True
            logger.info(f"Connected to call channel {self.ws_url}")
            await ws.send(JoinTenantMessage(tenant_id=self.tenant_id).model_dump_json())

            async for message in ws:
                try:
                    data = json.loads(message)
                except ValueError:
                    logger.warning("Dropping non-JSON message from call channel")
                    continue
                try:
                    await self.handle_message(data)
                except ValueError as e:
                    # pydantic ValidationError on a malformed event
                    logger.warning(f"Dropping malformed call channel message: {e}")

    async def run(self) -> None:
        """Listen until stop(); reconnect with backoff, then fall back to polling."""
        attempt = 0
        while not self._stopped:
            try:
                await self._listen()
                attempt = 0
            except (OSError, websockets.exceptions.WebSocketException) as e:
                logger.warning(f"Call channel connection failed: {e}")
            finally:
                self.connected = False
                self.joined = False

            if self._stopped:
                break

            if attempt >= self.max_reconnect_attempts:
                logger.error(f"Giving up on call channel after {attempt} reconnect attempts")
                await self._fall_back_to_polling()
                return

            delay = backoff_delay(attempt)
            attempt += 1
            logger.info(f"Reconnecting to call channel in {delay}s (attempt {attempt})")
            await asyncio.sleep(delay)

    async def _fall_back_to_polling(self) -> None:
        if self.poller is None:
            logger.error("No poller configured; incoming calls will not be shown")
            return
        self.polling = True
        logger.warning(f"Switching tenant {self.tenant_id} to polling mode")
        await self.poller.run()

    def stop(self) -> None:
        self._stopped = True
        if self.poller is not None:
            self.poller.stop()
        self.machine.close()
