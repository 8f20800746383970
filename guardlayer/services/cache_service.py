"""
表结构快照缓存
按连接ID缓存目标库的表结构，过期后重新读取；不缓存失败结果
"""
import os
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional

from ..utils.logger import get_logger
from .dto import SchemaSnapshot

logger = get_logger(__name__)

DEFAULT_SCHEMA_TTL = 300  # 5分钟


class SchemaCacheService:
    """
    内存缓存服务（LRU + TTL）

    进程内共享、无锁：并发未命中时可能重复读取表结构并覆盖写入，
    读取本身是只读且幂等的。
    """

    def __init__(
        self,
        ttl: Optional[float] = None,
        max_size: int = 256,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        初始化缓存服务

        Args:
            ttl: 过期时间（秒），默认读取 SCHEMA_CACHE_TTL 环境变量
            max_size: 最大缓存条目数
            clock: 当前时间函数（测试时可替换）
        """
        if ttl is None:
            ttl = float(os.getenv("SCHEMA_CACHE_TTL", DEFAULT_SCHEMA_TTL))

        self.cache: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self.ttl = ttl
        self.max_size = max_size
        self.clock = clock
        self.hits = 0
        self.misses = 0

        logger.info(f"表结构缓存初始化: ttl={ttl}s, max_size={max_size}")

    def get(self, connection_id: str) -> Optional[SchemaSnapshot]:
        """
        获取缓存的表结构

        Args:
            connection_id: 连接ID

        Returns:
            缓存的快照；不存在或已过期时返回None
        """
        entry = self.cache.get(connection_id)
        if entry is None:
            self.misses += 1
            logger.debug(f"表结构缓存未命中: {connection_id}")
            return None

        if self.clock() - entry['stored_at'] >= self.ttl:
            del self.cache[connection_id]
            self.misses += 1
            logger.debug(f"表结构缓存已过期: {connection_id}")
            return None

        self.cache.move_to_end(connection_id)
        self.hits += 1
        return entry['value']

    def set(self, connection_id: str, snapshot: SchemaSnapshot) -> None:
        """
        写入表结构快照

        Args:
            connection_id: 连接ID
            snapshot: 表结构快照
        """
        if len(self.cache) >= self.max_size and connection_id not in self.cache:
            oldest_key = next(iter(self.cache))
            del self.cache[oldest_key]
            logger.debug(f"缓存已满，删除最旧条目: {oldest_key}")

        self.cache[connection_id] = {
            'value': snapshot,
            'stored_at': self.clock(),
        }
        self.cache.move_to_end(connection_id)

    def invalidate(self, connection_id: str) -> bool:
        """删除指定连接的缓存，返回是否存在"""
        if connection_id in self.cache:
            del self.cache[connection_id]
            logger.debug(f"表结构缓存已删除: {connection_id}")
            return True
        return False

    def clear(self) -> None:
        """清空所有缓存"""
        count = len(self.cache)
        self.cache.clear()
        logger.info(f"表结构缓存已清空: {count} 条")

    def cleanup_expired(self) -> int:
        """
        清理过期的缓存条目

        Returns:
            清理的条目数
        """
        now = self.clock()
        expired_keys = [
            key for key, entry in self.cache.items()
            if now - entry['stored_at'] >= self.ttl
        ]

        for key in expired_keys:
            del self.cache[key]

        if expired_keys:
            logger.info(f"清理过期表结构缓存: {len(expired_keys)} 条")

        return len(expired_keys)

    def get_stats(self) -> Dict[str, Any]:
        """获取缓存统计信息"""
        total_requests = self.hits + self.misses
        hit_rate = (self.hits / total_requests * 100) if total_requests > 0 else 0

        return {
            'size': len(self.cache),
            'max_size': self.max_size,
            'ttl': self.ttl,
            'hits': self.hits,
            'misses': self.misses,
            'hit_rate': f"{hit_rate:.2f}%",
            'total_requests': total_requests
        }
