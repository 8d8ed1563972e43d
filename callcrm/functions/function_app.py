"""
Azure Functions Entry Point
Serverless form of the inbound-call webhook and health check

The function host holds no agent connections; events are relayed to the
real-time server when REALTIME_RELAY_URL is set, otherwise agents pick
calls up by polling the ledger.
"""
import json
import logging
from typing import Callable, Optional

import azure.functions as func

from callcrm import __version__
from callcrm.core.config import Settings, get_settings
from callcrm.core.logging_config import setup_logging
from callcrm.domain.interfaces.event_publisher import EventPublisher, NullPublisher
from callcrm.domain.models.call_log import utc_now
from callcrm.domain.services.call_correlation import CallCorrelationEngine
from callcrm.domain.services.webhook_dedup import WebhookDeduplicator
from callcrm.services.relay_publisher import HttpRelayPublisher
from callcrm.services.webhook_ingress import WebhookAuditTrail, WebhookIngress

logger = logging.getLogger(__name__)

app = func.FunctionApp()

WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

_ingress: Optional[WebhookIngress] = None


def build_publisher(settings: Settings) -> EventPublisher:
    if settings.realtime_relay_url:
        return HttpRelayPublisher(settings.realtime_relay_url, secret=settings.relay_secret)
    logger.warning("REALTIME_RELAY_URL not set; agents will receive calls by polling")
    return NullPublisher()


def build_ingress(settings: Settings) -> WebhookIngress:
    """Wire stores, publisher and audit trail for one function host."""
    from callcrm.main import build_stores

    directory, ledger = build_stores(settings)
    engine = CallCorrelationEngine(
        directory=directory,
        ledger=ledger,
        publisher=build_publisher(settings),
        deduplicator=WebhookDeduplicator(settings.webhook_dedup_window_seconds),
    )
    audit = WebhookAuditTrail(ledger if settings.persist_webhook_audit else None)
    return WebhookIngress(engine, audit)


def get_ingress() -> WebhookIngress:
    # Built lazily so a cold start with bad config still answers with a 500 body
    global _ingress
    if _ingress is None:
        settings = get_settings()
        setup_logging(settings.log_level)
        _ingress = build_ingress(settings)
    return _ingress


async def handle_incoming_call_request(req: func.HttpRequest, ingress: WebhookIngress) -> func.HttpResponse:
    """Translate an Azure HTTP request into an ingress call and back."""
    result = await ingress.handle(req.method, req.params.get("company"), req.get_body())
    return func.HttpResponse(
        result.text(),
        status_code=result.status_code,
        headers=result.headers,
        mimetype=result.media_type,
    )


async def serve_webhook(
    req: func.HttpRequest,
    ingress_factory: Callable[[], WebhookIngress] = get_ingress
) -> func.HttpResponse:
    """Build (or reuse) the ingress and handle the request; setup failures get a JSON 500."""
    try:
        ingress = ingress_factory()
    except Exception as e:
        # Bad settings, unreachable or malformed store URL
        logger.error(f"Webhook function is not configured: {e}", exc_info=True)
        if (req.method or "").upper() == "POST":
            await WebhookAuditTrail().record(req.params.get("company"), None, False, error=str(e))
        return func.HttpResponse(
            json.dumps({
                "success": False,
                "error": "Webhook service is not configured",
                "timestamp": utc_now().isoformat(),
            }),
            status_code=500,
            mimetype="application/json",
        )
    return await handle_incoming_call_request(req, ingress)


@app.function_name(name="WebhookIncomingCall")
@app.route(route="webhook-incoming-call", methods=WEBHOOK_METHODS, auth_level=func.AuthLevel.ANONYMOUS)
async def webhook_incoming_call(req: func.HttpRequest) -> func.HttpResponse:
    return await serve_webhook(req)


def health_payload() -> dict:
    settings = get_settings()
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": settings.service_name,
        "version": __version__,
        "environment": "serverless",
    }


@app.function_name(name="Health")
@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health(req: func.HttpRequest) -> func.HttpResponse:
    return func.HttpResponse(
        json.dumps(health_payload()),
        status_code=200,
        mimetype="application/json",
    )
