"""Provider factory."""

from __future__ import annotations

import logging

from easyshift.core.config import ALLOWED_EXTRACTION_PROVIDERS, get_settings

from ..errors import ProviderNotConfigured
from .base import BaseProvider
from .mock import MockProvider, ScriptedResponse
from .openrouter import OpenRouterProvider

logger = logging.getLogger(__name__)

__all__ = ["get_provider", "BaseProvider", "MockProvider", "OpenRouterProvider", "ScriptedResponse"]


def get_provider(provider_name: str | None = None) -> BaseProvider:
    """Return the configured provider.

    Raises ``ProviderNotConfigured`` for unknown names or a missing API key;
    there is no silent fallback to the mock provider.
    """
    settings = get_settings()
    name = (provider_name or settings.ai_extraction_provider).lower().strip()

    if name not in ALLOWED_EXTRACTION_PROVIDERS:
        raise ProviderNotConfigured(f"Unknown AI provider: {name}")

    if name == "mock":
        return MockProvider()

    if not settings.openrouter_api_key:
        logger.error("OPENROUTER_API_KEY not set")
        raise ProviderNotConfigured("OpenRouter API key not configured")

    return OpenRouterProvider(
        api_key=settings.openrouter_api_key,
        base_url=settings.openrouter_base_url,
        referer=settings.openrouter_referer,
        title=settings.openrouter_title,
    )
