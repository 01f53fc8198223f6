"""
缓存存储

- CacheStore: get / set / delete / delete_pattern 抽象接口（异步）
- MemoryCacheStore: 进程内实现，基于 cachetools.TLRUCache（每个条目单独 TTL）
- RedisCacheStore: 分布式实现，基于 redis.asyncio

缓存实例在应用启动时创建一次，通过引用传给查询优化器，不使用模块级全局变量。
"""

from __future__ import annotations

import fnmatch
import hashlib
import json
import logging
import time
from typing import Any, Awaitable, Callable, Dict, NamedTuple, Optional, Tuple

from cachetools import TLRUCache

from settlement.config import Settings

logger = logging.getLogger(__name__)


class CacheStore:
    """缓存存储接口，值均为已序列化的字符串"""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl: int) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def delete_pattern(self, pattern: str) -> int:
        """按通配符（* ?）批量删除，返回删除数量"""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class _Entry(NamedTuple):
    value: str
    ttl: float


class MemoryCacheStore(CacheStore):
    """进程内缓存"""

    def __init__(self, maxsize: int = 10000, timer: Callable[[], float] = time.monotonic):
        self._cache: TLRUCache = TLRUCache(
            maxsize=maxsize,
            ttu=lambda _key, entry, now: now + entry.ttl,
            timer=timer,
        )

    async def get(self, key: str) -> Optional[str]:
        entry = self._cache.get(key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: str, ttl: int) -> None:
        self._cache[key] = _Entry(value, ttl)

    async def delete(self, key: str) -> None:
        self._cache.pop(key, None)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key for key in list(self._cache.keys()) if fnmatch.fnmatchcase(key, pattern)]
        for key in keys:
            self._cache.pop(key, None)
        return len(keys)

    def __len__(self) -> int:
        return len(self._cache)


class RedisCacheStore(CacheStore):
    """Redis 缓存"""

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(url, decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int) -> None:
        await self._client.setex(key, ttl, value)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def delete_pattern(self, pattern: str) -> int:
        keys = [key async for key in self._client.scan_iter(match=pattern)]
        if not keys:
            return 0
        await self._client.delete(*keys)
        return len(keys)

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_store(settings: Settings) -> CacheStore:
    """按配置创建缓存实例（应用启动时调用一次）"""
    if settings.cache_backend == "redis":
        logger.info("使用 Redis 缓存: %s", settings.redis_url)
        return RedisCacheStore.from_url(settings.redis_url)
    if settings.cache_backend != "memory":
        raise ValueError(f"未知的缓存类型: {settings.cache_backend}")
    return MemoryCacheStore(maxsize=settings.cache_max_entries)


# ---------------------------------------------------------------------------
# 缓存键
# ---------------------------------------------------------------------------

def _normalize(value: Any) -> Any:
    """递归排序字典键，保证语义相同的条件生成同一个键"""
    if isinstance(value, dict):
        return {str(k): _normalize(value[k]) for k in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted((_normalize(v) for v in value), key=repr)
    return value


def make_query_cache_key(prefix: str, namespace: str, params: Dict[str, Any]) -> str:
    """生成查询缓存键：{prefix}:query:{namespace}:{md5(参数)}"""
    payload = json.dumps(_normalize(params), sort_keys=True, ensure_ascii=False, default=str)
    digest = hashlib.md5(payload.encode("utf-8")).hexdigest()
    return f"{prefix}:query:{namespace}:{digest}"


def table_pattern(prefix: str, table_name: str) -> str:
    return f"{prefix}:*{table_name}*"


# ---------------------------------------------------------------------------
# 读写辅助
# ---------------------------------------------------------------------------

async def get_or_load(
    store: Optional[CacheStore],
    key: str,
    ttl: int,
    loader: Callable[[], Awaitable[Any]],
    encode: Callable[[Any], str],
    decode: Callable[[str], Any],
) -> Any:
    """
    先读缓存，未命中则执行 loader 并回填

    缓存读写失败只记录日志，降级为直接查询，不向调用方抛出。
    """
    if store is not None:
        try:
            cached = await store.get(key)
        except Exception as e:
            logger.warning("读取缓存失败，降级为直接查询 key=%s: %s", key, e)
            cached = None
        if cached is not None:
            try:
                return decode(cached)
            except ValueError as e:
                logger.warning("缓存内容无法解析，忽略 key=%s: %s", key, e)

    result = await loader()

    if store is not None:
        try:
            await store.set(key, encode(result), ttl)
        except Exception as e:
            logger.warning("写入缓存失败 key=%s: %s", key, e)
    return result


# 写入某张表后需要失效的缓存命名空间
CACHE_DEPENDENCIES: Dict[str, Tuple[str, ...]] = {
    "cost_settlement": ("cost_settlement", "cost_settlement_mall"),
    "pending_settlement_details": ("pending_settlement_details",),
    "arrival_data_details": ("arrival_data_details",),
}


async def clear_table_cache(store: Optional[CacheStore], prefix: str, table_name: str) -> int:
    """按表名通配删除缓存；失败只记录日志"""
    if store is None:
        return 0
    try:
        return await store.delete_pattern(table_pattern(prefix, table_name))
    except Exception as e:
        logger.warning("清除缓存失败 table=%s: %s", table_name, e)
        return 0


async def invalidate_after_write(store: Optional[CacheStore], prefix: str, table_name: str) -> int:
    """写入 table_name 后，失效所有依赖它的缓存命名空间"""
    removed = 0
    for namespace in CACHE_DEPENDENCIES.get(table_name, (table_name,)):
        removed += await clear_table_cache(store, prefix, namespace)
    if removed:
        logger.info("表 %s 写入后清除缓存 %d 条", table_name, removed)
    return removed
