"""
表结构缓存管理API路由
"""
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from ..services.cache_service import SchemaCacheService
from ..utils.logger import get_logger
from .deps import get_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/api/cache", tags=["cache"])


class CacheStatsResponse(BaseModel):
    """缓存统计响应"""
    size: int
    max_size: int
    ttl: float
    hits: int
    misses: int
    hit_rate: str
    total_requests: int


@router.get("/stats", response_model=CacheStatsResponse, status_code=status.HTTP_200_OK)
async def get_cache_stats(cache: SchemaCacheService = Depends(get_cache)):
    """
    获取缓存统计信息
    """
    try:
        stats = cache.get_stats()

        return CacheStatsResponse(**stats)

    except Exception as e:
        logger.error(f"获取缓存统计失败: {str(e)}", exc_info=True)
        raise


@router.post("/clear", status_code=status.HTTP_204_NO_CONTENT)
async def clear_cache(cache: SchemaCacheService = Depends(get_cache)):
    """
    清空所有表结构缓存
    """
    try:
        cache.clear()

        logger.info("表结构缓存已清空")
        return None

    except Exception as e:
        logger.error(f"清空缓存失败: {str(e)}", exc_info=True)
        raise


@router.post("/cleanup", status_code=status.HTTP_200_OK)
async def cleanup_expired_cache(cache: SchemaCacheService = Depends(get_cache)):
    """
    清理过期的缓存条目
    """
    try:
        count = cache.cleanup_expired()

        return {"cleaned": count}

    except Exception as e:
        logger.error(f"清理过期缓存失败: {str(e)}", exc_info=True)
        raise


@router.delete("/{connection_id}", status_code=status.HTTP_200_OK)
async def invalidate_connection_cache(connection_id: str, cache: SchemaCacheService = Depends(get_cache)):
    """
    失效单个连接的表结构缓存（目标库结构变更后调用）
    """
    return {"invalidated": cache.invalidate(connection_id)}
