"""
Tests for the Azure Functions webhook entry point
"""
import json
import pytest

import azure.functions as func

from callcrm.core.config import Settings
from callcrm.domain.interfaces.event_publisher import NullPublisher
from callcrm.domain.services.call_correlation import CallCorrelationEngine
from callcrm.functions import function_app
from callcrm.functions.function_app import (
    build_publisher,
    handle_incoming_call_request,
    health_payload,
    serve_webhook,
)
from callcrm.services.relay_publisher import HttpRelayPublisher
from callcrm.services.webhook_ingress import WebhookAuditTrail, WebhookIngress


def make_request(method="POST", company="T1", body=None):
    params = {"company": company} if company is not None else {}
    return func.HttpRequest(
        method=method,
        url="/api/webhook-incoming-call",
        params=params,
        body=json.dumps(body).encode() if body is not None else b"",
    )


@pytest.fixture
def ingress(directory, ledger, clock):
    engine = CallCorrelationEngine(directory, ledger, NullPublisher(), now=clock)
    return WebhookIngress(engine, WebhookAuditTrail())


class TestWebhookFunction:
    """Tests for handle_incoming_call_request"""

    @pytest.mark.asyncio
    async def test_known_caller(self, ingress, directory, ledger):
        contact = await directory.create_contact("T1", "+306912345678", "Maria")

        response = await handle_incoming_call_request(
            make_request(body={"caller_id": "306912345678"}), ingress
        )

        assert response.status_code == 200
        body = json.loads(response.get_body())
        assert body["data"]["callerFound"] is True
        assert body["data"]["callerName"] == "Maria"
        assert ledger.all()[0].contact_id == contact.id

    @pytest.mark.asyncio
    async def test_missing_company(self, ingress):
        response = await handle_incoming_call_request(
            make_request(company=None, body={"caller_id": "301"}), ingress
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_empty_body(self, ingress):
        response = await handle_incoming_call_request(make_request(body=None), ingress)

        assert response.status_code == 400
        assert json.loads(response.get_body())["error"] == "Empty request body"

    @pytest.mark.asyncio
    async def test_options(self, ingress):
        response = await handle_incoming_call_request(make_request(method="OPTIONS"), ingress)

        assert response.status_code == 200
        assert response.get_body() == b""
        assert response.headers["Access-Control-Allow-Origin"] == "*"

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, ingress):
        response = await handle_incoming_call_request(make_request(method="GET"), ingress)

        assert response.status_code == 405
        assert json.loads(response.get_body())["allowedMethods"] == ["POST", "OPTIONS"]


class TestFunctionWiring:
    """Tests for publisher selection and health"""

    def test_relay_publisher_when_url_set(self):
        publisher = build_publisher(Settings(realtime_relay_url="https://crm.example.com", relay_secret="s"))

        assert isinstance(publisher, HttpRelayPublisher)
        assert publisher.base_url == "https://crm.example.com"

    def test_null_publisher_without_relay(self):
        assert isinstance(build_publisher(Settings(realtime_relay_url=None)), NullPublisher)

    def test_health_payload(self):
        body = health_payload()

        assert body["status"] == "healthy"
        assert body["environment"] == "serverless"

    def test_app_is_function_app(self):
        assert isinstance(function_app.app, func.FunctionApp)


class TestServeWebhook:
    """Tests for serve_webhook when the ingress cannot be built"""

    @staticmethod
    def failing_factory():
        raise ValueError("Invalid URL")

    @pytest.mark.asyncio
    async def test_setup_failure_returns_json_500(self):
        response = await serve_webhook(make_request(body={"caller_id": "301"}), self.failing_factory)

        assert response.status_code == 500
        assert response.mimetype == "application/json"
        body = json.loads(response.get_body())
        assert body["success"] is False
        assert body["error"] == "Webhook service is not configured"
        assert "Invalid URL" not in response.get_body().decode()

    @pytest.mark.asyncio
    async def test_setup_failure_is_audited(self, caplog):
        with caplog.at_level("INFO", logger="callcrm.audit"):
            await serve_webhook(make_request(body={"caller_id": "301"}), self.failing_factory)

        audit = [r for r in caplog.records if r.name == "callcrm.audit"]
        assert len(audit) == 1
        assert audit[0].success is False
        assert audit[0].tenant_id == "T1"

    @pytest.mark.asyncio
    async def test_configured_ingress_is_used(self, ingress):
        response = await serve_webhook(make_request(body={"caller_id": "301"}), lambda: ingress)

        assert response.status_code == 200
