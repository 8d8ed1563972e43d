"""
FastAPI Application Entry Point
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional, Tuple

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callcrm import __version__
from callcrm.api.routes import api_router
from callcrm.core.config import Settings, get_settings
from callcrm.core.logging_config import setup_logging
from callcrm.core.validation import validate_config_on_startup
from callcrm.domain.interfaces.call_ledger import CallLedger, WebhookAuditStore
from callcrm.domain.interfaces.contact_directory import ContactDirectory
from callcrm.domain.services.call_correlation import CallCorrelationEngine
from callcrm.domain.services.presence_registry import PresenceRegistry
from callcrm.domain.services.webhook_dedup import WebhookDeduplicator
from callcrm.services.webhook_ingress import WebhookAuditTrail, WebhookIngress

logger = logging.getLogger(__name__)


def build_stores(settings: Settings) -> Tuple[ContactDirectory, CallLedger]:
    """Contact Directory and Call Ledger for the configured backend"""
    if settings.uses_memory_store:
        from callcrm.infrastructure.storage.memory_store import (
            InMemoryCallLedger,
            InMemoryContactDirectory,
        )
        return InMemoryContactDirectory(), InMemoryCallLedger()

    from callcrm.api.dependencies import get_supabase
    from callcrm.infrastructure.storage.supabase_store import (
        SupabaseCallLedger,
        SupabaseContactDirectory,
    )
    client = get_supabase(settings.supabase_url, settings.supabase_service_key)
    return SupabaseContactDirectory(client), SupabaseCallLedger(client)


def create_app(
    settings: Optional[Settings] = None,
    contact_directory: Optional[ContactDirectory] = None,
    call_ledger: Optional[CallLedger] = None
) -> FastAPI:
    """
    Build the application.

    Stores may be injected (tests); otherwise they are built from settings
    at startup.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan - startup and shutdown events.

        Startup:
        - Validates configuration
        - Builds stores, correlation engine and webhook ingress
        - Starts the presence registry dispatch loop

        Shutdown:
        - Stops the presence registry
        """
        # ========================
        # STARTUP
        # ========================
        logger.info(f"Starting {settings.service_name}...")

        strict_validation = settings.is_production
        try:
            validate_config_on_startup(settings, strict=strict_validation)
        except RuntimeError as e:
            if strict_validation:
                logger.error(f"Startup failed: {e}")
                raise
            logger.warning(f"Configuration warnings (non-fatal in {settings.environment}): {e}")

        directory, ledger = contact_directory, call_ledger
        if directory is None or ledger is None:
            built_directory, built_ledger = build_stores(settings)
            directory = directory or built_directory
            ledger = ledger or built_ledger

        registry: PresenceRegistry = app.state.registry
        await registry.start()

        audit_store = ledger if settings.persist_webhook_audit and isinstance(ledger, WebhookAuditStore) else None
        engine = CallCorrelationEngine(
            directory=directory,
            ledger=ledger,
            publisher=registry,
            deduplicator=WebhookDeduplicator(settings.webhook_dedup_window_seconds),
        )

        app.state.contact_directory = directory
        app.state.call_ledger = ledger
        app.state.engine = engine
        app.state.ingress = WebhookIngress(engine, WebhookAuditTrail(audit_store))

        logger.info(f"{settings.service_name} started successfully")

        yield  # Application is running

        # ========================
        # SHUTDOWN
        # ========================
        logger.info(f"Shutting down {settings.service_name}...")
        await registry.stop()
        logger.info(f"{settings.service_name} shutdown complete")

    app = FastAPI(
        title="Call CRM Webhook Service",
        description="Correlates VoIP inbound-call webhooks with tenant contacts and pushes them to agents",
        version=__version__,
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.registry = PresenceRegistry()

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"message": "Call CRM Webhook API", "status": "running"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    setup_logging(get_settings().log_level)
    uvicorn.run(app, host="0.0.0.0", port=8000)
