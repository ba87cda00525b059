"""
FastAPI 依赖注入
缓存层、预热器与看板服务在 lifespan 中构造一次，挂在 app.state 上，
路由通过 Depends 取用，不使用模块级全局缓存。
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from feed_service.config import FeedServiceSettings, settings as default_settings
from feed_service.layers.aggregation import Orchestrator
from feed_service.layers.cache import CacheLayer
from feed_service.layers.prefetch import Prefetcher
from feed_service.layers.storage import DurableStorage, build_durable_storage
from feed_service.layers.store import CacheStore
from feed_service.layers.transport import HttpTransport
from feed_service.services.dashboard_service import DashboardService, build_catalog
from feed_service.db import get_redis


@dataclass
class FeedRuntime:
    """进程级运行时对象集合"""
    cache: CacheLayer
    orchestrator: Orchestrator
    prefetcher: Prefetcher
    dashboard: DashboardService


def build_runtime(
    cfg: Optional[FeedServiceSettings] = None,
    transport: Optional[HttpTransport] = None,
    durable: Optional[DurableStorage] = None,
) -> FeedRuntime:
    """按配置组装缓存层 → 聚合层 → 预热层 → 看板服务"""
    cfg = cfg or default_settings
    if durable is None:
        durable = build_durable_storage(cfg.DURABLE_BACKEND, cfg.CACHE_DIR, get_redis())
    store = CacheStore(durable=durable, prefix=cfg.CACHE_KEY_PREFIX, default_ttl=cfg.CACHE_TTL)
    cache = CacheLayer(
        store,
        transport or HttpTransport(),
        default_ttl=cfg.CACHE_TTL,
        default_delay=cfg.SEQUENTIAL_DELAY,
    )
    orchestrator = Orchestrator(cache)
    catalog = build_catalog(cfg)
    return FeedRuntime(
        cache=cache,
        orchestrator=orchestrator,
        prefetcher=Prefetcher(orchestrator, catalog),
        dashboard=DashboardService(cache, orchestrator, catalog),
    )


def get_runtime(request: Request) -> FeedRuntime:
    return request.app.state.runtime


def get_cache_layer(request: Request) -> CacheLayer:
    return get_runtime(request).cache


def get_prefetcher(request: Request) -> Prefetcher:
    return get_runtime(request).prefetcher


def get_dashboard_service(request: Request) -> DashboardService:
    return get_runtime(request).dashboard
