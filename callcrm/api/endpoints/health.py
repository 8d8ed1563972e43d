"""
Health Endpoint
"""
from fastapi import APIRouter, Depends

from callcrm.api.dependencies import get_app_settings, get_registry
from callcrm.core.config import Settings
from callcrm.domain.models.call_log import utc_now
from callcrm.domain.services.presence_registry import PresenceRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    settings: Settings = Depends(get_app_settings),
    registry: PresenceRegistry = Depends(get_registry)
):
    """
    Health check endpoint.

    Returns service identity and connected agents per tenant.
    """
    return {
        "status": "healthy",
        "timestamp": utc_now().isoformat(),
        "service": settings.service_name,
        "version": settings.service_version,
        "connectedClients": [
            {"companyId": tenant_id, "connectedClients": count}
            for tenant_id, count in registry.tenant_snapshot()
        ],
    }
