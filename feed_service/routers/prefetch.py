"""
预热状态路由
GET /api/prefetch/status   - 预热进度
"""

from fastapi import APIRouter, Depends

from feed_service.dependencies import get_prefetcher
from feed_service.layers.prefetch import Prefetcher
from feed_service.models.response import ApiResponse, PrefetchStatus

router = APIRouter(prefix="/api/prefetch", tags=["缓存预热"])


@router.get("/status", response_model=ApiResponse)
async def prefetch_status(prefetcher: Prefetcher = Depends(get_prefetcher)):
    status = PrefetchStatus(
        started=prefetcher.started,
        warming=prefetcher.is_warming(),
        tiers=prefetcher.summary(),
    )
    return ApiResponse.ok(data=status.model_dump())
