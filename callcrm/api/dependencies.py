"""
API Dependencies
Shared dependencies for Supabase access and the services held on app.state
"""
import os
from typing import Optional

from fastapi import Request
from supabase import create_client, Client
from dotenv import load_dotenv

from callcrm.core.config import Settings
from callcrm.domain.services.presence_registry import PresenceRegistry
from callcrm.services.webhook_ingress import WebhookIngress

load_dotenv()


def get_supabase(url: Optional[str] = None, key: Optional[str] = None) -> Client:
    """
    Get Supabase client with validation.

    Explicit arguments win over the environment.

    Raises:
        RuntimeError: If Supabase URL or SERVICE_KEY is not configured
    """
    url = url or os.getenv("SUPABASE_URL")
    key = key or os.getenv("SUPABASE_SERVICE_KEY")

    if not url:
        raise RuntimeError(
            "SUPABASE_URL is not configured. "
            "Set SUPABASE_URL environment variable."
        )
    if not key:
        raise RuntimeError(
            "SUPABASE_SERVICE_KEY is not configured. "
            "Set SUPABASE_SERVICE_KEY environment variable."
        )

    return create_client(url, key)


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> PresenceRegistry:
    return request.app.state.registry


def get_ingress(request: Request) -> WebhookIngress:
    return request.app.state.ingress
