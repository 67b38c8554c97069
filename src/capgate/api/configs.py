"""Thin config-admin passthrough to the store and the cache."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query

from capgate.cache.config_cache import ConfigCache
from capgate.core.deps import get_config_cache, get_config_store
from capgate.core.errors import bad_request, not_found, service_unavailable
from capgate.domain.chat import Capability
from capgate.domain.models import ModelConfigView
from capgate.storage.repos import SqlConfigStore

router = APIRouter()
log = logging.getLogger(__name__)


@router.get("/configs")
async def list_configs(
    capability: Capability | None = Query(default=None),
    store: SqlConfigStore = Depends(get_config_store),
) -> list[ModelConfigView]:
    configs = await store.list_configs(capability)
    return [ModelConfigView.from_config(c) for c in configs]


@router.put("/configs/{config_id}/default")
async def set_default(
    config_id: str,
    capability: Capability = Query(default=Capability.CHAT),
    store: SqlConfigStore = Depends(get_config_store),
) -> ModelConfigView:
    try:
        config = await store.set_default(config_id, capability)
    except ValueError as e:
        raise bad_request(str(e)) from e
    return ModelConfigView.from_config(config)


@router.delete("/configs/{config_id}")
async def delete_config(
    config_id: str,
    store: SqlConfigStore = Depends(get_config_store),
) -> dict[str, object]:
    deleted = await store.delete_config(config_id)
    if not deleted:
        raise not_found(f"Model config {config_id} not found")
    return {"deleted": True, "id": config_id}


@router.post("/configs/sync-cache")
async def sync_cache(
    store: SqlConfigStore = Depends(get_config_store),
    cache: ConfigCache = Depends(get_config_cache),
) -> dict[str, object]:
    if not cache.enabled:
        return {"synced": 0, "detail": "No cache configured"}
    configs = await store.list_configs()
    try:
        synced = await cache.sync_all(configs)
    except Exception as e:
        log.warning("configs.sync_failed", extra={"error": type(e).__name__})
        raise service_unavailable("Cache is unavailable") from e
    log.info("configs.synced", extra={"count": synced})
    return {"synced": synced}
