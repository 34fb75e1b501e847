"""Redis backed components"""
from .redis_cache import (
    RedisIdempotencyStore,
    init_redis_client,
    shutdown_redis_client,
    get_redis_client,
)

__all__ = [
    "RedisIdempotencyStore",
    "init_redis_client",
    "shutdown_redis_client",
    "get_redis_client",
]
