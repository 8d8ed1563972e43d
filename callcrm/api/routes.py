"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter

from callcrm.api.endpoints import health, realtime, webhooks

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(webhooks.router)
api_router.include_router(realtime.router)
