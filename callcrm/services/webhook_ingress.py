"""
Webhook Ingress
Framework-agnostic handling of inbound-call webhooks

Shared by the FastAPI routes and the Azure Functions HTTP trigger so both
entry points give identical status codes, bodies and audit entries.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from callcrm.domain.errors import DependencyError, ValidationError
from callcrm.domain.interfaces.call_ledger import WebhookAuditStore
from callcrm.domain.models.call_log import utc_now
from callcrm.domain.services.call_correlation import CallCorrelationEngine
from callcrm.domain.services.phone_normalizer import normalize

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("callcrm.audit")

ALLOWED_METHODS = ["POST", "OPTIONS"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

EXPECTED_FORMAT = {
    "caller_id": "+1234567890 (required)",
    "timestamp": "2024-01-01T12:00:00Z (optional)",
    "call_type": "incoming (optional)",
    "webhook_id": "unique-id (optional)",
    "source": "provider name (optional)",
}

_TENANT_ID = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
_MISSING_TENANT_VALUES = {"", "undefined", "null"}


@dataclass
class IngressResponse:
    """Status, JSON body and headers, ready for any HTTP framework"""
    status_code: int
    body: Optional[Dict[str, Any]] = None
    headers: Dict[str, str] = field(default_factory=lambda: dict(CORS_HEADERS))

    def text(self) -> str:
        return "" if self.body is None else json.dumps(self.body, indent=2)

    @property
    def media_type(self) -> str:
        return "application/json" if self.body is not None else "text/plain"


def _timestamp() -> str:
    return utc_now().isoformat()


def parse_tenant_id(raw: Optional[str]) -> str:
    """
    Validate a tenant identifier from the path or query string.

    Raises:
        ValidationError: If missing or malformed
    """
    tenant_id = (raw or "").strip()
    if tenant_id.lower() in _MISSING_TENANT_VALUES:
        raise ValidationError(
            "Company ID not found. Expected /webhook/incoming-call/{companyId} "
            "or ?company={companyId}"
        )
    if not _TENANT_ID.match(tenant_id):
        raise ValidationError(f"Invalid company ID: {tenant_id!r}")
    return tenant_id


def parse_body(body: Union[bytes, str, Dict[str, Any], None]) -> Dict[str, Any]:
    """
    Decode a webhook body into a JSON object.

    Raises:
        ValidationError: If empty, not JSON, or not an object
    """
    if isinstance(body, dict):
        return body
    if body is None or (isinstance(body, (bytes, str)) and not body.strip()):
        raise ValidationError("Empty request body")

    try:
        payload = json.loads(body)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid JSON in request body: {e}") from e

    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


class WebhookAuditTrail:
    """
    One structured audit entry per webhook invocation.

    Entries go to the `callcrm.audit` logger; when a store is given they are
    also persisted. A failing store never affects the webhook response.
    """

    def __init__(self, store: Optional[WebhookAuditStore] = None):
        self.store = store

    async def record(
        self,
        tenant_id: Optional[str],
        caller_number: Optional[str],
        success: bool,
        error: Optional[str] = None,
        call_log_id: Optional[str] = None,
        webhook_id: Optional[str] = None,
        duplicate: bool = False
    ) -> Dict[str, Any]:
        entry = {
            "tenant_id": tenant_id,
            "caller_number": caller_number,
            "success": success,
            "error": error,
            "call_log_id": call_log_id,
            "webhook_id": webhook_id,
            "duplicate": duplicate,
            "created_at": _timestamp(),
        }

        level = logging.INFO if success else logging.WARNING
        audit_logger.log(
            level,
            f"webhook tenant={tenant_id} caller={caller_number} success={success}"
            + (f" error={error}" if error else ""),
            extra={
                "tenant_id": tenant_id,
                "caller_number": caller_number,
                "success": success,
                "error": error,
                "call_log_id": call_log_id,
            },
        )

        if self.store is not None:
            try:
                await self.store.insert_webhook_log(entry)
            except Exception as e:
                logger.error(f"Failed to persist webhook audit entry: {e}")

        return entry


class WebhookIngress:
    """
    Validates webhook requests, runs correlation and shapes the response.

    Usage:
        ingress = WebhookIngress(engine, WebhookAuditTrail())
        response = await ingress.handle("POST", "acme", request_body)
    """

    def __init__(self, engine: CallCorrelationEngine, audit: Optional[WebhookAuditTrail] = None):
        self.engine = engine
        self.audit = audit or WebhookAuditTrail()

    def preflight(self) -> IngressResponse:
        return IngressResponse(status_code=200)

    def method_not_allowed(self, method: str) -> IngressResponse:
        return IngressResponse(
            status_code=405,
            body={
                "success": False,
                "error": "Method not allowed. Use POST.",
                "allowedMethods": ALLOWED_METHODS,
                "timestamp": _timestamp(),
            },
        )

    async def handle(
        self,
        method: str,
        tenant_id: Optional[str],
        body: Union[bytes, str, Dict[str, Any], None]
    ) -> IngressResponse:
        method = (method or "").upper()
        if method == "OPTIONS":
            return self.preflight()
        if method != "POST":
            logger.info(f"Rejected {method} webhook request for tenant {tenant_id}")
            return self.method_not_allowed(method)

        tenant: Optional[str] = tenant_id
        caller_number: Optional[str] = None
        webhook_id: Optional[str] = None

        try:
            tenant = parse_tenant_id(tenant_id)
            payload = parse_body(body)

            if payload.get("caller_id") is not None:
                caller_number = normalize(str(payload["caller_id"]))
            if payload.get("webhook_id") is not None:
                webhook_id = str(payload["webhook_id"])

            result = await self.engine.correlate(tenant, payload)

        except ValidationError as e:
            logger.warning(f"Rejected webhook for tenant {tenant_id}: {e.message}")
            await self.audit.record(tenant, caller_number, False, error=e.message, webhook_id=webhook_id)
            return IngressResponse(
                status_code=400,
                body={
                    "success": False,
                    "error": e.message,
                    "timestamp": _timestamp(),
                    "help": {"expectedFormat": EXPECTED_FORMAT},
                },
            )

        except DependencyError as e:
            logger.error(f"Webhook processing failed for tenant {tenant}: {e.message}", exc_info=True)
            await self.audit.record(tenant, caller_number, False, error=e.message, webhook_id=webhook_id)
            return self._server_error("Webhook processing failed: storage unavailable")

        except Exception as e:
            logger.error(f"Unexpected webhook failure for tenant {tenant}: {e}", exc_info=True)
            await self.audit.record(tenant, caller_number, False, error=str(e), webhook_id=webhook_id)
            return self._server_error("Internal server error")

        await self.audit.record(
            tenant,
            caller_number,
            True,
            call_log_id=result.call_log_id,
            webhook_id=webhook_id,
            duplicate=result.duplicate,
        )

        message = (
            "Duplicate webhook ignored, returning original call"
            if result.duplicate
            else "Webhook processed successfully"
        )
        return IngressResponse(
            status_code=200,
            body={
                "success": True,
                "message": message,
                "data": result.event.summary().to_wire(),
            },
        )

    def _server_error(self, message: str) -> IngressResponse:
        return IngressResponse(
            status_code=500,
            body={
                "success": False,
                "error": message,
                "timestamp": _timestamp(),
            },
        )
