from __future__ import annotations

import argparse
import os

import redis.asyncio as redis

from capgate.cache.config_cache import ConfigCache
from capgate.cache.redis_cache import RedisCache
from capgate.core.config import get_settings
from capgate.domain.chat import Capability
from capgate.domain.models import ProtocolFamily
from capgate.security.vault import get_vault
from capgate.storage.db import create_engine, create_sessionmaker
from capgate.storage.repos import SqlConfigStore


async def main() -> None:
    parser = argparse.ArgumentParser(description="Create a model config (API key is encrypted before storing)")
    parser.add_argument("--name", required=True)
    parser.add_argument("--model", required=True, help="Upstream model id, e.g. qwen-plus")
    parser.add_argument("--base-url", default="", help="Upstream base URL")
    parser.add_argument("--temperature", type=float, default=None)
    parser.add_argument(
        "--capability",
        action="append",
        choices=[c.value for c in Capability],
        help="Capability served (repeatable, default: chat)",
    )
    parser.add_argument("--protocol", choices=[p.value for p in ProtocolFamily], default=ProtocolFamily.OPENAI_COMPATIBLE.value)
    parser.add_argument("--default", action="store_true", help="Make it the default for every capability it serves")
    args = parser.parse_args()

    api_key = os.getenv("UPSTREAM_API_KEY")
    if not api_key:
        raise SystemExit("UPSTREAM_API_KEY is not set (read from the environment so it stays out of shell history)")

    settings = get_settings()
    if not settings.database_url:
        raise SystemExit("DATABASE_URL is not set")

    engine = create_engine(database_url=settings.database_url)
    redis_client = redis.from_url(settings.redis_url) if settings.redis_url else None
    cache = ConfigCache(
        RedisCache(redis_client) if redis_client is not None else None,
        ttl_seconds=settings.config_cache_ttl_seconds,
    )
    store = SqlConfigStore(create_sessionmaker(engine), cache=cache, vault=get_vault())

    capabilities = [Capability(c) for c in (args.capability or [Capability.CHAT.value])]
    try:
        config = await store.create_config(
            name=args.name,
            model=args.model,
            api_key=api_key,
            base_url=args.base_url,
            temperature=args.temperature,
            capabilities=capabilities,
            protocol_family=ProtocolFamily(args.protocol),
        )
        if args.default:
            for capability in capabilities:
                config = await store.set_default(config.id, capability)
    finally:
        if redis_client is not None:
            await redis_client.aclose()
        await engine.dispose()

    print(config.id)


if __name__ == "__main__":
    import asyncio

    asyncio.run(main())
