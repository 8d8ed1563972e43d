"""
Unit tests for webhook ingress parsing, response shaping and audit
"""
import json
import pytest
from unittest.mock import AsyncMock, MagicMock

from callcrm.domain.errors import DependencyError, ValidationError
from callcrm.services.webhook_ingress import (
    CORS_HEADERS,
    IngressResponse,
    WebhookAuditTrail,
    WebhookIngress,
    parse_body,
    parse_tenant_id,
)


class TestParseTenantId:
    """Tests for parse_tenant_id"""

    def test_valid(self):
        assert parse_tenant_id(" acme-01 ") == "acme-01"

    @pytest.mark.parametrize("raw", [None, "", "   ", "undefined", "null", "NULL"])
    def test_missing_values(self, raw):
        with pytest.raises(ValidationError, match="Company ID not found"):
            parse_tenant_id(raw)

    @pytest.mark.parametrize("raw", ["acme/other", "-acme", "a" * 65, "acme corp"])
    def test_malformed(self, raw):
        with pytest.raises(ValidationError, match="Invalid company ID"):
            parse_tenant_id(raw)


class TestParseBody:
    """Tests for parse_body"""

    def test_bytes(self):
        assert parse_body(b'{"caller_id": "+301"}') == {"caller_id": "+301"}

    def test_dict_passthrough(self):
        payload = {"caller_id": "+301"}
        assert parse_body(payload) is payload

    @pytest.mark.parametrize("body", [None, b"", "  "])
    def test_empty(self, body):
        with pytest.raises(ValidationError, match="Empty request body"):
            parse_body(body)

    def test_invalid_json(self):
        with pytest.raises(ValidationError, match="Invalid JSON"):
            parse_body(b"{caller_id")

    def test_non_object(self):
        with pytest.raises(ValidationError, match="JSON object"):
            parse_body(b'["+301"]')


class TestIngressResponse:
    """Tests for IngressResponse"""

    def test_empty_body(self):
        response = IngressResponse(status_code=200)
        assert response.text() == ""
        assert response.media_type == "text/plain"
        assert response.headers == CORS_HEADERS

    def test_headers_are_copied(self):
        response = IngressResponse(status_code=200)
        response.headers["X-Extra"] = "1"
        assert "X-Extra" not in CORS_HEADERS

    def test_json_body(self):
        response = IngressResponse(status_code=400, body={"success": False})
        assert json.loads(response.text()) == {"success": False}
        assert response.media_type == "application/json"


class TestWebhookIngress:
    """Tests for WebhookIngress.handle with a mocked engine"""

    @pytest.fixture
    def engine(self):
        engine = MagicMock()
        engine.correlate = AsyncMock()
        return engine

    @pytest.fixture
    def audit_store(self):
        store = MagicMock()
        store.insert_webhook_log = AsyncMock()
        return store

    @pytest.fixture
    def ingress(self, engine, audit_store):
        return WebhookIngress(engine, WebhookAuditTrail(audit_store))

    @pytest.mark.asyncio
    async def test_options_is_preflight(self, ingress, engine, audit_store):
        response = await ingress.handle("OPTIONS", "acme", None)

        assert response.status_code == 200
        assert response.body is None
        engine.correlate.assert_not_called()
        audit_store.insert_webhook_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_is_not_allowed(self, ingress, engine, audit_store):
        response = await ingress.handle("GET", "acme", None)

        assert response.status_code == 405
        assert response.body["allowedMethods"] == ["POST", "OPTIONS"]
        engine.correlate.assert_not_called()
        audit_store.insert_webhook_log.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_tenant_is_400_and_audited(self, ingress, engine, audit_store):
        response = await ingress.handle("POST", "undefined", b'{"caller_id": "+301"}')

        assert response.status_code == 400
        assert "expectedFormat" in response.body["help"]
        engine.correlate.assert_not_called()
        entry = audit_store.insert_webhook_log.call_args[0][0]
        assert entry["success"] is False
        assert entry["caller_number"] is None

    @pytest.mark.asyncio
    async def test_engine_validation_error_is_400(self, ingress, engine, audit_store):
        engine.correlate.side_effect = ValidationError("caller_id is required")

        response = await ingress.handle("POST", "acme", b'{"call_type": "incoming"}')

        assert response.status_code == 400
        assert response.body["error"] == "caller_id is required"
        assert audit_store.insert_webhook_log.call_count == 1

    @pytest.mark.asyncio
    async def test_dependency_error_is_generic_500(self, ingress, engine, audit_store):
        engine.correlate.side_effect = DependencyError("relation call_logs does not exist", operation="create")

        response = await ingress.handle("POST", "acme", b'{"caller_id": "301", "webhook_id": "evt-9"}')

        assert response.status_code == 500
        assert response.body["error"] == "Webhook processing failed: storage unavailable"
        entry = audit_store.insert_webhook_log.call_args[0][0]
        assert entry["caller_number"] == "+301"
        assert entry["webhook_id"] == "evt-9"
        assert "call_logs" in entry["error"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_500(self, ingress, engine):
        engine.correlate.side_effect = KeyError("boom")

        response = await ingress.handle("POST", "acme", b'{"caller_id": "301"}')

        assert response.status_code == 500
        assert response.body["error"] == "Internal server error"

    @pytest.mark.asyncio
    async def test_audit_store_failure_does_not_change_response(self, engine, audit_store):
        engine.correlate.side_effect = ValidationError("caller_id is required")
        audit_store.insert_webhook_log.side_effect = DependencyError("audit table missing")
        ingress = WebhookIngress(engine, WebhookAuditTrail(audit_store))

        response = await ingress.handle("POST", "acme", b"{}")

        assert response.status_code == 400


class TestWebhookAuditTrail:
    """Tests for WebhookAuditTrail"""

    @pytest.mark.asyncio
    async def test_logs_without_store(self, caplog):
        trail = WebhookAuditTrail()

        with caplog.at_level("INFO", logger="callcrm.audit"):
            entry = await trail.record("acme", "+301", True, call_log_id="call-1")

        assert entry["call_log_id"] == "call-1"
        assert any("tenant=acme" in r.getMessage() for r in caplog.records)
