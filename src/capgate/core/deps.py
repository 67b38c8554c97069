from __future__ import annotations

import httpx
from fastapi import Request

from capgate.cache.config_cache import ConfigCache
from capgate.core.config import Settings
from capgate.core.errors import service_unavailable
from capgate.gateway.facade import Gateway
from capgate.providers.openai_compatible import OpenAICompatibleAdapter
from capgate.providers.registry import ProviderRegistry
from capgate.providers.sdk_streaming import GenAIStreamingAdapter
from capgate.providers.vision import VisionAdapter
from capgate.storage.repos import SqlConfigStore


def build_registry(client: httpx.AsyncClient, settings: Settings) -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register(OpenAICompatibleAdapter(client=client, error_body_limit=settings.upstream_error_body_limit))
    registry.register(
        VisionAdapter(
            client=client,
            reasoning_prefix=settings.vision_reasoning_model_prefix,
            error_body_limit=settings.upstream_error_body_limit,
        )
    )
    registry.register(GenAIStreamingAdapter(error_body_limit=settings.upstream_error_body_limit))
    return registry


def get_gateway(request: Request) -> Gateway:
    gateway = getattr(request.app.state, "gateway", None)
    if gateway is None:
        raise service_unavailable("Gateway is not configured (DATABASE_URL is not set)")
    return gateway


def get_config_store(request: Request) -> SqlConfigStore:
    store = getattr(request.app.state, "config_store", None)
    if store is None:
        raise service_unavailable("Config store is not configured (DATABASE_URL is not set)")
    return store


def get_config_cache(request: Request) -> ConfigCache:
    cache = getattr(request.app.state, "config_cache", None)
    if cache is None:
        return ConfigCache(None, ttl_seconds=0)
    return cache
