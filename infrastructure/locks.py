"""
按订单引用串行化的锁实现

- KeyedAsyncLock: 单进程内，按 key 复用 asyncio.Lock，无人持有时回收
- RedisKeyedLock: 多 worker 部署，本地锁之外再叠加 Redis 分布式锁
"""
from __future__ import annotations

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import ServiceBusyException
from infrastructure.external.cache import RedisClient, RedisLockTimeout, peek_redis_client

logger = get_logger(__name__)


class _Entry:
    __slots__ = ("lock", "waiters")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.waiters = 0


class KeyedAsyncLock:
    """进程内按 key 互斥；不同 key 互不阻塞"""

    def __init__(self) -> None:
        self._entries: Dict[str, _Entry] = {}

    @asynccontextmanager
    async def hold(self, order_ref: str) -> AsyncIterator[None]:
        entry = self._entries.get(order_ref)
        if entry is None:
            entry = self._entries[order_ref] = _Entry()
        entry.waiters += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.waiters -= 1
            if entry.waiters == 0:
                self._entries.pop(order_ref, None)

    def __len__(self) -> int:
        return len(self._entries)


class RedisKeyedLock:
    """本地锁 + Redis 锁；本地锁避免同进程请求争抢同一个 Redis key"""

    def __init__(
        self,
        redis: RedisClient,
        *,
        local: Optional[KeyedAsyncLock] = None,
        timeout: Optional[int] = None,
        blocking_timeout: Optional[int] = None,
    ) -> None:
        self._redis = redis
        self._local = local or KeyedAsyncLock()
        self._timeout = timeout or settings.redis.lock_timeout
        self._blocking_timeout = blocking_timeout or settings.redis.lock_blocking_timeout

    @asynccontextmanager
    async def hold(self, order_ref: str) -> AsyncIterator[None]:
        async with self._local.hold(order_ref), AsyncExitStack() as stack:
            try:
                await stack.enter_async_context(
                    self._redis.lock(
                        f"order:{order_ref}",
                        timeout=self._timeout,
                        blocking_timeout=self._blocking_timeout,
                    )
                )
            except RedisLockTimeout as exc:
                # 只转换加锁等待超时，业务代码内的异常原样抛出
                raise ServiceBusyException(
                    "Order is being processed, please retry shortly", details={"order_id": order_ref}
                ) from exc
            yield


_local_lock: Optional[KeyedAsyncLock] = None


def get_order_lock():
    """返回进程级订单锁；Redis 已初始化时使用分布式锁"""
    global _local_lock
    if _local_lock is None:
        _local_lock = KeyedAsyncLock()
    redis = peek_redis_client()
    if redis is not None:
        return RedisKeyedLock(redis, local=_local_lock)
    return _local_lock
