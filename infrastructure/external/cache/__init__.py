"""缓存层对外暴露的接口"""
from .redis_client import (
    RedisClient,
    RedisLockTimeout,
    init_redis_client,
    peek_redis_client,
    shutdown_redis_client,
)


__all__ = [
    "RedisClient",
    "RedisLockTimeout",
    "init_redis_client",
    "peek_redis_client",
    "shutdown_redis_client",
]
