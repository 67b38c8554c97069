from __future__ import annotations

from capgate.cache.base import Cache
from capgate.cache.config_cache import ConfigCache
from capgate.cache.redis_cache import RedisCache

__all__ = ["Cache", "ConfigCache", "RedisCache"]
