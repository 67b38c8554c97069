from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
import redis.asyncio as redis
from fastapi import FastAPI

from capgate import __version__
from capgate.api import api_router
from capgate.cache.config_cache import ConfigCache
from capgate.cache.redis_cache import RedisCache
from capgate.core.config import get_settings
from capgate.core.deps import build_registry
from capgate.core.errors import GatewayError, gateway_error_handler
from capgate.core.logging import configure_logging
from capgate.core.middleware import RequestIdMiddleware
from capgate.gateway.facade import Gateway
from capgate.routing.resolver import ConfigResolver
from capgate.security.vault import get_vault
from capgate.storage.db import create_engine, create_sessionmaker
from capgate.storage.repos import SqlConfigStore

log = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(level=settings.capgate_log_level)
    log.info("app.start", extra={"env": settings.capgate_env})

    vault = get_vault()
    redis_client = redis.from_url(settings.redis_url) if settings.redis_url else None
    config_cache = ConfigCache(
        RedisCache(redis_client) if redis_client is not None else None,
        ttl_seconds=settings.config_cache_ttl_seconds,
    )
    app.state.config_cache = config_cache

    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.invoke_timeout_max_seconds, connect=settings.upstream_connect_timeout_seconds),
    )
    app.state.upstream_http_client = http_client

    db_engine = None
    if settings.database_url:
        db_engine = create_engine(database_url=settings.database_url)
        store = SqlConfigStore(create_sessionmaker(db_engine), cache=config_cache, vault=vault)
        app.state.db_engine = db_engine
        app.state.config_store = store
        app.state.gateway = Gateway(
            resolver=ConfigResolver(store, config_cache),
            vault=vault,
            registry=build_registry(http_client, settings),
            default_timeout=settings.invoke_timeout_default_seconds,
            max_timeout=settings.invoke_timeout_max_seconds,
            close_timeout=settings.upstream_close_timeout_seconds,
        )
    else:
        log.warning("app.no_database", extra={"env": settings.capgate_env})

    yield

    await http_client.aclose()
    if redis_client is not None:
        await redis_client.aclose()
    if db_engine is not None:
        await db_engine.dispose()
    log.info("app.stop")


def create_app() -> FastAPI:
    app = FastAPI(title="capgate", version=__version__, lifespan=lifespan)
    app.add_middleware(RequestIdMiddleware)
    app.add_exception_handler(GatewayError, gateway_error_handler)
    app.include_router(api_router)
    return app


app = create_app()
