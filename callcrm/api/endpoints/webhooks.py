"""
Webhooks API Endpoints
Receives inbound-call webhooks from VoIP providers

Tenant in the path (/webhook/incoming-call/{tenant_id}) or in the query
string (/webhook/incoming-call?company={tenant_id}).
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from callcrm.api.dependencies import get_ingress
from callcrm.services.webhook_ingress import IngressResponse, WebhookIngress

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhook", tags=["webhooks"])

# Everything except POST/OPTIONS is answered with 405 by the ingress
ROUTED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

TEST_PAYLOAD = {
    "caller_id": "+306912345678",
    "call_type": "incoming",
    "source": "test_api",
}


def _to_response(result: IngressResponse) -> Response:
    return Response(
        content=result.text(),
        status_code=result.status_code,
        headers=result.headers,
        media_type=result.media_type,
    )


@router.api_route("/incoming-call/{tenant_id}", methods=ROUTED_METHODS)
async def incoming_call(
    tenant_id: str,
    request: Request,
    ingress: WebhookIngress = Depends(get_ingress)
):
    """
    Handle an inbound-call webhook.

    Body: {"caller_id": "+306912345678", "timestamp"?, "call_type"?, "webhook_id"?, "source"?}
    """
    body = await request.body()
    return _to_response(await ingress.handle(request.method, tenant_id, body))


@router.api_route("/incoming-call", methods=ROUTED_METHODS)
async def incoming_call_query(
    request: Request,
    company: Optional[str] = Query(None, description="Tenant (company) ID"),
    ingress: WebhookIngress = Depends(get_ingress)
):
    """Same as incoming_call with the tenant in ?company="""
    body = await request.body()
    return _to_response(await ingress.handle(request.method, company, body))


@router.post("/test/{tenant_id}")
async def test_incoming_call(
    tenant_id: str,
    ingress: WebhookIngress = Depends(get_ingress)
):
    """
    Push a sample incoming call through the normal pipeline.

    Lets an operator check that agents of a tenant receive popups.
    """
    logger.info(f"Test webhook triggered for tenant {tenant_id}")
    return _to_response(await ingress.handle("POST", tenant_id, dict(TEST_PAYLOAD)))
