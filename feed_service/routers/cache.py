"""
缓存管理路由
GET  /api/cache/stats     - 缓存统计
POST /api/cache/clear     - 清空两级缓存
"""

from fastapi import APIRouter, Depends

from feed_service.dependencies import get_cache_layer
from feed_service.layers.cache import CacheLayer
from feed_service.models.response import ApiResponse, CacheStats

router = APIRouter(prefix="/api/cache", tags=["缓存管理"])


@router.get("/stats", response_model=ApiResponse)
async def cache_stats(cache: CacheLayer = Depends(get_cache_layer)):
    """获取缓存统计信息（内存条目数、持久层条目数与体积）"""
    stats = CacheStats(**cache.cache_stats())
    return ApiResponse.ok(data=stats.model_dump())


@router.post("/clear", response_model=ApiResponse)
async def clear_cache(cache: CacheLayer = Depends(get_cache_layer)):
    """清空内存与持久层缓存"""
    cache.clear_cache()
    return ApiResponse.ok(message="缓存已清空")
