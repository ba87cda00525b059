"""
看板数据路由
GET /api/dashboard-data        - 预聚合的看板文档
GET /api/sources               - 数据源目录
GET /api/sources/{name}        - 抓取单个数据源
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from feed_service.dependencies import get_dashboard_service
from feed_service.errors import FetchError, UpstreamStatusError
from feed_service.models.response import ApiResponse
from feed_service.services.dashboard_service import DASHBOARD_CACHE_CONTROL, DashboardService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["看板数据"])


@router.get("/dashboard-data")
async def dashboard_data(
    response: Response,
    svc: DashboardService = Depends(get_dashboard_service),
):
    """聚合全部数据源；单个数据源失败不影响整体返回"""
    data = await svc.get_dashboard_data()
    response.headers["Cache-Control"] = DASHBOARD_CACHE_CONTROL
    return data


@router.get("/sources", response_model=ApiResponse)
async def list_sources(svc: DashboardService = Depends(get_dashboard_service)):
    """列出已启用的数据源"""
    sources = svc.describe_sources()
    return ApiResponse.ok(data={"sources": sources, "count": len(sources)})


@router.get("/sources/{name}", response_model=ApiResponse)
async def get_source(name: str, svc: DashboardService = Depends(get_dashboard_service)):
    """抓取单个数据源（带缓存与请求合并）"""
    if name not in svc.catalog:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"未知数据源: {name}",
        )
    try:
        payload = await svc.get_source(name)
    except UpstreamStatusError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"上游返回 {exc.status}",
        )
    except FetchError as exc:
        logger.warning(f"数据源 {name} 获取失败: {exc}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        )
    return ApiResponse.ok(data=payload, message=f"获取数据源 {name} 成功")
