"""
Real-time Channel Endpoints
WebSocket channel agents subscribe to, plus the relay publish endpoint used
by serverless webhook invocations.
"""
import hmac
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, WebSocket, WebSocketDisconnect, status

from callcrm.api.dependencies import get_app_settings, get_registry
from callcrm.core.config import Settings
from callcrm.domain.errors import ValidationError
from callcrm.domain.models.realtime_messages import (
    ErrorMessage,
    IncomingCallEvent,
    JoinedMessage,
    JoinTenantMessage,
    LeaveTenantMessage,
    LeftMessage,
    PingMessage,
    PongMessage,
    parse_client_message,
)
from callcrm.domain.services.presence_registry import PresenceRegistry
from callcrm.services.relay_publisher import RELAY_SECRET_HEADER
from callcrm.services.webhook_ingress import parse_tenant_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


async def _send(websocket: WebSocket, message) -> None:
    await websocket.send_json(message.model_dump(mode="json"))


@router.websocket("/ws/calls")
async def calls_channel(websocket: WebSocket):
    """
    Agent channel.

    Message Format (Client -> Server):
    {"type": "join_tenant", "tenant_id": "acme"}
    {"type": "leave_tenant", "tenant_id": "acme"}
    {"type": "ping"}

    Message Format (Server -> Client):
    {"type": "joined" | "left" | "incoming_call" | "pong" | "error", ...}
    """
    registry: PresenceRegistry = websocket.app.state.registry

    await websocket.accept()
    logger.info("Agent channel connected")

    try:
        while True:
            raw = await websocket.receive_text()

            try:
                message = parse_client_message(json.loads(raw))
            except ValueError as e:
                # json.JSONDecodeError and pydantic's ValidationError are ValueErrors
                await _send(websocket, ErrorMessage(message=f"Invalid message: {e}"))
                continue

            if isinstance(message, JoinTenantMessage):
                try:
                    tenant_id = parse_tenant_id(message.tenant_id)
                except ValidationError as e:
                    await _send(websocket, ErrorMessage(message=e.message))
                    continue
                registry.register(tenant_id, websocket)
                await _send(websocket, JoinedMessage(tenant_id=tenant_id))

            elif isinstance(message, LeaveTenantMessage):
                registry.unregister(websocket, message.tenant_id)
                await _send(websocket, LeftMessage(tenant_id=message.tenant_id))

            elif isinstance(message, PingMessage):
                await _send(websocket, PongMessage())

    except WebSocketDisconnect:
        logger.info("Agent channel disconnected")
    except Exception as e:
        logger.error(f"Agent channel error: {e}", exc_info=True)
    finally:
        registry.unregister(websocket)


@router.post("/realtime/publish/{tenant_id}")
async def relay_publish(
    tenant_id: str,
    event: IncomingCallEvent,
    relay_secret: Optional[str] = Header(None, alias=RELAY_SECRET_HEADER),
    settings: Settings = Depends(get_app_settings),
    registry: PresenceRegistry = Depends(get_registry)
):
    """
    Publish an incoming-call event to the tenant's connected agents.

    Called by webhook invocations that do not hold agent connections.
    """
    if not settings.relay_secret or not relay_secret or not hmac.compare_digest(
        relay_secret.encode(), settings.relay_secret.encode()
    ):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid relay secret"
        )

    if event.company_id != tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Event tenant does not match the publish path"
        )

    delivered = await registry.publish(tenant_id, event)
    return {"success": True, "delivered": delivered}
